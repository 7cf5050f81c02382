import pytest

from agentloop.tools import FunctionTool


@pytest.fixture
def add_tool():
    """``add(a, b)`` tool that records its calls."""
    calls = []

    def add(a: int, b: int) -> int:
        """Add two integers."""
        calls.append((a, b))
        return a + b

    tool = FunctionTool.from_callable(add)
    tool.calls = calls
    return tool


@pytest.fixture
def failing_tool():
    """Tool that always raises and counts its invocations."""
    calls = []

    def explode(reason: str = "boom") -> str:
        """Always fails."""
        calls.append(reason)
        raise RuntimeError(f"tool exploded: {reason}")

    tool = FunctionTool.from_callable(explode)
    tool.calls = calls
    return tool

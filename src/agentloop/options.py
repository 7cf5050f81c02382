"""Per-request chat options and the right-biased merge used to layer them."""

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .tools import Tool, merge_tools


class ToolChoice(str, Enum):
    AUTO = "auto"
    REQUIRED = "required"
    NONE = "none"


FUNCTION_CHOICE_PREFIX = "function:"


def tool_choice_function(name: str) -> str:
    """Tool choice that forces the model to call ``name``."""
    return f"{FUNCTION_CHOICE_PREFIX}{name}"


@dataclass
class ChatOptions:
    """Options for one backend call. ``None`` means "not set"."""

    model_id: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[List[str]] = None
    seed: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    tools: Optional[List[Tool]] = None
    tool_choice: Optional[str] = None
    response_format: Optional[Any] = None
    metadata: Optional[Dict[str, str]] = None
    user: Optional[str] = None
    instructions: Optional[str] = None
    conversation_id: Optional[str] = None
    store: Optional[bool] = None
    extra: Optional[Dict[str, Any]] = None


_MERGED_SPECIALLY = {"tools", "instructions", "metadata", "extra"}


def join_instructions(*parts: Optional[str]) -> Optional[str]:
    texts = [p for p in parts if p]
    return "\n".join(texts) if texts else None


def _merge_dicts(base: Optional[dict], override: Optional[dict]) -> Optional[dict]:
    if base is None and override is None:
        return None
    merged = dict(base or {})
    merged.update(override or {})
    return merged


def merge_chat_options(
    base: Optional[ChatOptions], override: Optional[ChatOptions]
) -> ChatOptions:
    """Overlay ``override`` on ``base`` and return a new ChatOptions.

    Scalars set on ``override`` win. Instructions are joined with a newline,
    tools are merged by name (override wins, base order kept) and the metadata
    and extra dicts are merged key by key. Neither input is modified.
    """
    base = base or ChatOptions()
    override = override or ChatOptions()

    merged = replace(base)
    for f in fields(ChatOptions):
        if f.name in _MERGED_SPECIALLY:
            continue
        value = getattr(override, f.name)
        if value is not None:
            setattr(merged, f.name, value)

    merged.instructions = join_instructions(base.instructions, override.instructions)
    if base.tools is None and override.tools is None:
        merged.tools = None
    else:
        merged.tools = merge_tools(base.tools, override.tools)
    merged.metadata = _merge_dicts(base.metadata, override.metadata)
    merged.extra = _merge_dicts(base.extra, override.extra)
    if merged.stop is not None:
        merged.stop = list(merged.stop)
    return merged

"""
Tools the model can call, schema generation from Python callables, and the
name-keyed registry the invocation loop resolves calls against.
"""

import enum
import inspect
import json
import logging
import types
from abc import ABC, abstractmethod
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Literal,
    Optional,
    Type,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel, ValidationError

from .errors import ToolExecutionError

logger = logging.getLogger(__name__)


class ApprovalMode(str, enum.Enum):
    NEVER = "never"
    ALWAYS = "always"


class Tool(ABC):
    """A named, schema-described callable exposed to the model.

    Parameters
    ----------
    name : str
        Identity of the tool; unique within one request
    description : str
        Shown to the model
    parameters : dict
        JSON schema of the arguments object
    approval_mode : ApprovalMode
        ``ALWAYS`` makes the invocation loop stop and ask for approval
    declaration_only : bool
        Declared to the model but never invoked by the loop
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        parameters: Optional[Dict[str, Any]] = None,
        approval_mode: ApprovalMode = ApprovalMode.NEVER,
        declaration_only: bool = False,
    ):
        self.name = name
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}}
        self.approval_mode = ApprovalMode(approval_mode)
        self.declaration_only = declaration_only

    @abstractmethod
    async def invoke(self, arguments: str) -> Any:
        """Run the tool with JSON-encoded ``arguments`` and return its result."""

    def to_schema(self) -> Dict[str, Any]:
        """Chat completions function definition for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


_JSON_TYPES = {str: "string", int: "integer", float: "number", bool: "boolean"}


def _json_schema_for(annotation: Any) -> Dict[str, Any]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return _json_schema_for(args[0])
        return {"anyOf": [_json_schema_for(a) for a in args]}
    if origin is Literal:
        values = list(get_args(annotation))
        return {"type": _JSON_TYPES.get(type(values[0]), "string"), "enum": values}
    if origin in (list, tuple, set) or annotation in (list, tuple, set):
        item_args = get_args(annotation)
        schema = {"type": "array"}
        if item_args:
            schema["items"] = _json_schema_for(item_args[0])
        return schema
    if origin is dict or annotation is dict:
        return {"type": "object"}
    if inspect.isclass(annotation) and issubclass(annotation, enum.Enum):
        return {"type": "string", "enum": [m.value for m in annotation]}
    if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
        return annotation.model_json_schema()
    return {"type": _JSON_TYPES.get(annotation, "string")}


def callable_to_parameters_schema(callable_func: Callable) -> Dict[str, Any]:
    """
    Build the JSON schema of a callable's keyword arguments.

    Args:
        callable_func: The callable to describe

    Returns:
        An object schema with one property per parameter
    """
    sig = inspect.signature(callable_func)
    type_hints = get_type_hints(callable_func)

    schema = {"type": "object", "properties": {}, "required": []}

    for param_name, param in sig.parameters.items():
        if param_name == "self" or param.kind in (
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
        ):
            continue

        param_schema = _json_schema_for(type_hints.get(param_name, str))
        param_schema.setdefault("description", f"The {param_name} parameter")
        schema["properties"][param_name] = param_schema

        if param.default is inspect.Parameter.empty:
            schema["required"].append(param_name)

    return schema


class FunctionTool(Tool):
    """Tool backed by a Python function, sync or async.

    The function receives the decoded arguments as keyword arguments, or, when
    ``args_model`` is given, a single validated pydantic model instance.
    A FunctionTool without a function can only be declared.
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        parameters: Optional[Dict[str, Any]] = None,
        fn: Optional[Callable] = None,
        *,
        args_model: Optional[Type[BaseModel]] = None,
        approval_mode: ApprovalMode = ApprovalMode.NEVER,
        declaration_only: bool = False,
    ):
        if parameters is None and args_model is not None:
            parameters = args_model.model_json_schema()
        super().__init__(name, description, parameters, approval_mode, declaration_only)
        self.fn = fn
        self.args_model = args_model

    @classmethod
    def from_callable(
        cls,
        fn: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        **kwargs,
    ) -> "FunctionTool":
        """Describe ``fn`` from its signature; its docstring becomes the description."""
        tool_name = name or fn.__name__
        if description is None:
            doc = inspect.getdoc(fn)
            description = doc.strip() if doc else f"Execute {tool_name}"
        return cls(
            tool_name, description, callable_to_parameters_schema(fn), fn, **kwargs
        )

    @classmethod
    def from_model(
        cls,
        name: str,
        description: str,
        args_model: Type[BaseModel],
        fn: Optional[Callable] = None,
        **kwargs,
    ) -> "FunctionTool":
        return cls(name, description, None, fn, args_model=args_model, **kwargs)

    def parse_arguments(self, arguments: str) -> Any:
        if self.args_model is not None:
            try:
                return self.args_model.model_validate_json(arguments or "{}")
            except ValidationError as e:
                raise ToolExecutionError(
                    f"invalid arguments for {self.name}: {e}", tool_name=self.name
                ) from e
        try:
            args = json.loads(arguments) if arguments and arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolExecutionError(
                f"invalid arguments for {self.name}: {e}", tool_name=self.name
            ) from e
        if not isinstance(args, dict):
            raise ToolExecutionError(
                f"invalid arguments for {self.name}: expected a JSON object",
                tool_name=self.name,
            )
        return args

    async def invoke(self, arguments: str) -> Any:
        if self.fn is None:
            raise ToolExecutionError(
                f"tool {self.name} has no implementation", tool_name=self.name
            )
        args = self.parse_arguments(arguments)

        # Execute the callable (handle both sync and async)
        if self.args_model is not None:
            result = self.fn(args)
        else:
            result = self.fn(**args)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(
    fn: Optional[Callable] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    approval_mode: ApprovalMode = ApprovalMode.NEVER,
):
    """Decorator turning a function into a FunctionTool.

    Usable bare (``@tool``) or with arguments (``@tool(name="x")``).
    """

    def wrap(func: Callable) -> FunctionTool:
        return FunctionTool.from_callable(
            func, name=name, description=description, approval_mode=approval_mode
        )

    if fn is not None:
        return wrap(fn)
    return wrap


class ToolRegistry:
    """Ordered name -> tool map. Registering a name again replaces the earlier tool."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self.tools: Dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, tool: Tool) -> None:
        if tool.name in self.tools and self.tools[tool.name] is not tool:
            logger.debug(f"Tool '{tool.name}' registered twice, later registration wins")
        self.tools[tool.name] = tool

    def register_callable(
        self,
        callable_func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> FunctionTool:
        """
        Register a callable and auto-generate its tool schema.

        Args:
            callable_func: The callable to register
            name: Optional name override (defaults to callable name)
            description: Optional description

        Returns:
            The FunctionTool wrapping the callable
        """
        function_tool = FunctionTool.from_callable(callable_func, name, description)
        self.register(function_tool)
        return function_tool

    def get(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def get_schemas(self) -> List[Dict[str, Any]]:
        """Get all tool schemas for the chat completions API."""
        return [t.to_schema() for t in self.tools.values()]

    def get_tool_names(self) -> List[str]:
        return list(self.tools.keys())

    def has_tool(self, name: str) -> bool:
        return name in self.tools

    def clear(self) -> None:
        self.tools.clear()

    def __iter__(self):
        return iter(self.tools.values())

    def __len__(self) -> int:
        return len(self.tools)


def merge_tools(
    base: Optional[Iterable[Tool]], override: Optional[Iterable[Tool]]
) -> List[Tool]:
    """Merge two tool lists by name: override wins, base order is kept, new names are appended."""
    registry = ToolRegistry(base)
    for t in override or []:
        registry.register(t)
    return list(registry)

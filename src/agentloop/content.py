"""
Content items carried inside messages.

Every item is a frozen pydantic model tagged with a ``$type`` discriminator.
The set of variants is closed: ``Content`` and ``CONTENT_TYPES`` are the only
places that enumerate them, and decoding an unknown tag is an error.
"""

import base64
import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ContentDecodeError


class _Model(BaseModel):
    model_config = ConfigDict(
        frozen=True, populate_by_name=True, alias_generator=to_camel
    )


class UsageDetails(_Model):
    """Token accounting reported by a backend."""

    input_token_count: Optional[int] = None
    output_token_count: Optional[int] = None
    total_token_count: Optional[int] = None

    def __add__(self, other: "UsageDetails") -> "UsageDetails":
        def _sum(a, b):
            if a is None and b is None:
                return None
            return (a or 0) + (b or 0)

        return UsageDetails(
            input_token_count=_sum(self.input_token_count, other.input_token_count),
            output_token_count=_sum(self.output_token_count, other.output_token_count),
            total_token_count=_sum(self.total_token_count, other.total_token_count),
        )


class TextContent(_Model):
    type: Literal["text"] = Field("text", alias="$type")
    text: str = ""


class TextReasoningContent(_Model):
    type: Literal["reasoning"] = Field("reasoning", alias="$type")
    text: str = ""


class DataContent(_Model):
    """Inline binary payload stored as a ``data:`` URI."""

    type: Literal["data"] = Field("data", alias="$type")
    uri: str
    media_type: Optional[str] = None

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str) -> "DataContent":
        encoded = base64.b64encode(data).decode("ascii")
        return cls(uri=f"data:{media_type};base64,{encoded}", media_type=media_type)

    @property
    def data(self) -> bytes:
        """Decoded payload of the data URI."""
        _, _, payload = self.uri.partition(",")
        return base64.b64decode(payload)


class UriContent(_Model):
    type: Literal["uri"] = Field("uri", alias="$type")
    uri: str
    media_type: Optional[str] = None


class ErrorContent(_Model):
    type: Literal["error"] = Field("error", alias="$type")
    message: str = ""
    error_code: Optional[str] = None
    details: Optional[str] = None


class FunctionCallContent(_Model):
    """A request from the model to call a tool. ``arguments`` is JSON text."""

    type: Literal["functionCall"] = Field("functionCall", alias="$type")
    call_id: str
    name: str
    arguments: str = ""


class FunctionResultContent(_Model):
    type: Literal["functionResult"] = Field("functionResult", alias="$type")
    call_id: str
    result: Any = None


class UsageContent(_Model):
    type: Literal["usage"] = Field("usage", alias="$type")
    usage: UsageDetails = Field(default_factory=UsageDetails)


class HostedFileContent(_Model):
    type: Literal["hostedFile"] = Field("hostedFile", alias="$type")
    file_id: str


class HostedVectorStoreContent(_Model):
    type: Literal["hostedVectorStore"] = Field("hostedVectorStore", alias="$type")
    vector_store_id: str


class CodeInterpreterCallContent(_Model):
    type: Literal["codeInterpreterToolCall"] = Field(
        "codeInterpreterToolCall", alias="$type"
    )
    call_id: str
    code: str = ""


class CodeInterpreterResultContent(_Model):
    type: Literal["codeInterpreterToolResult"] = Field(
        "codeInterpreterToolResult", alias="$type"
    )
    call_id: str
    output: str = ""


class ImageGenerationCallContent(_Model):
    type: Literal["imageGenerationToolCall"] = Field(
        "imageGenerationToolCall", alias="$type"
    )
    call_id: str
    prompt: str = ""


class ImageGenerationResultContent(_Model):
    type: Literal["imageGenerationToolResult"] = Field(
        "imageGenerationToolResult", alias="$type"
    )
    call_id: str
    uri: Optional[str] = None


class McpServerCallContent(_Model):
    type: Literal["mcpServerToolCall"] = Field("mcpServerToolCall", alias="$type")
    call_id: str
    name: str
    arguments: str = ""


class McpServerResultContent(_Model):
    type: Literal["mcpServerToolResult"] = Field("mcpServerToolResult", alias="$type")
    call_id: str
    result: Any = None


class ApprovalRequestContent(_Model):
    """A tool call held back until someone approves it."""

    type: Literal["functionApprovalRequest"] = Field(
        "functionApprovalRequest", alias="$type"
    )
    call_id: str
    name: str
    arguments: str = ""

    def respond(self, approved: bool, reason: Optional[str] = None) -> "ApprovalResponseContent":
        return ApprovalResponseContent(
            call_id=self.call_id, approved=approved, reason=reason
        )


class ApprovalResponseContent(_Model):
    type: Literal["functionApprovalResponse"] = Field(
        "functionApprovalResponse", alias="$type"
    )
    call_id: str
    approved: bool
    reason: Optional[str] = None


Content = Annotated[
    Union[
        TextContent,
        TextReasoningContent,
        DataContent,
        UriContent,
        ErrorContent,
        FunctionCallContent,
        FunctionResultContent,
        UsageContent,
        HostedFileContent,
        HostedVectorStoreContent,
        CodeInterpreterCallContent,
        CodeInterpreterResultContent,
        ImageGenerationCallContent,
        ImageGenerationResultContent,
        McpServerCallContent,
        McpServerResultContent,
        ApprovalRequestContent,
        ApprovalResponseContent,
    ],
    Field(discriminator="type"),
]

CONTENT_TYPES: Dict[str, type] = {
    cls.model_fields["type"].default: cls
    for cls in get_args(get_args(Content)[0])
}


def content_to_dict(content: BaseModel) -> Dict[str, Any]:
    """Encode one content item as its ``$type``-tagged JSON object."""
    if type(content) not in CONTENT_TYPES.values():
        raise ContentDecodeError(f"unhandled content variant: {type(content).__name__}")
    return content.model_dump(mode="json", by_alias=True, exclude_none=True)


def content_from_dict(data: Dict[str, Any]):
    """Decode one ``$type``-tagged JSON object.

    Raises:
        ContentDecodeError: If the tag is missing or unknown, or the fields are invalid
    """
    if not isinstance(data, dict):
        raise ContentDecodeError(f"content must be an object, got {type(data).__name__}")
    tag = data.get("$type")
    cls = CONTENT_TYPES.get(tag)
    if cls is None:
        raise ContentDecodeError(f"unknown content type: {tag!r}")
    try:
        return cls.model_validate(data)
    except ValueError as e:
        raise ContentDecodeError(f"invalid {tag} content: {e}") from e


def contents_to_json(contents: List[BaseModel]) -> str:
    return json.dumps([content_to_dict(c) for c in contents])


def contents_from_json(text: str) -> list:
    try:
        items = json.loads(text)
    except json.JSONDecodeError as e:
        raise ContentDecodeError(f"invalid content JSON: {e}") from e
    if not isinstance(items, list):
        raise ContentDecodeError("content JSON must be an array")
    return [content_from_dict(item) for item in items]

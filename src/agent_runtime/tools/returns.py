"""Tagged content returned by tool calls."""

from __future__ import annotations

import base64
import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class TextReturn(BaseModel):
    kind: Literal["text"] = "text"
    text: str = ""

    def as_text(self) -> str:
        return self.text


class JsonReturn(BaseModel):
    kind: Literal["json"] = "json"
    value: Any = None

    def as_text(self) -> str:
        return json.dumps(self.value, ensure_ascii=False, default=str)


class ImageReturn(BaseModel):
    kind: Literal["image"] = "image"
    data: str
    media_type: str = "image/png"

    @classmethod
    def from_bytes(cls, raw: bytes, media_type: str = "image/png") -> ImageReturn:
        return cls(data=base64.b64encode(raw).decode("ascii"), media_type=media_type)

    def as_text(self) -> str:
        return f"[image: {self.media_type}]"


class ErrorReturn(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    retryable: bool = True

    def as_text(self) -> str:
        return f"Error: {self.message}"


class MultipleReturn(BaseModel):
    kind: Literal["multiple"] = "multiple"
    items: list[ToolReturn] = Field(default_factory=list)

    def as_text(self) -> str:
        return "\n".join(item.as_text() for item in self.items)


ToolReturn = Annotated[
    Union[TextReturn, JsonReturn, ImageReturn, ErrorReturn, MultipleReturn],
    Field(discriminator="kind"),
]

MultipleReturn.model_rebuild()

_RETURN_TYPES = (TextReturn, JsonReturn, ImageReturn, ErrorReturn, MultipleReturn)


def to_tool_return(value: Any) -> ToolReturn:
    """Convert whatever a tool function returned into tool return content."""
    if isinstance(value, _RETURN_TYPES):
        return value
    if value is None:
        return TextReturn(text="")
    if isinstance(value, str):
        return TextReturn(text=value)
    if isinstance(value, BaseModel):
        return JsonReturn(value=value.model_dump(mode="json"))
    if isinstance(value, (dict, list, tuple, int, float, bool)):
        return JsonReturn(value=list(value) if isinstance(value, tuple) else value)
    if isinstance(value, bytes):
        return ImageReturn.from_bytes(value)
    return TextReturn(text=str(value))


def is_error(content: ToolReturn) -> bool:
    return isinstance(content, ErrorReturn)

"""
Prompt content parts sent to the reasoning service.

A prompt is an ordered list of parts; each part is either inline text or a
reference to a local file that is uploaded before the call.
"""
from pathlib import Path
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text part must not be blank")
        return value


class FilePart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    path: Path
    mime_type: str | None = None

    @field_validator("path")
    @classmethod
    def _exists(cls, value: Path) -> Path:
        if not value.is_file():
            raise ValueError(f"file part does not exist: {value}")
        return value


PromptPart = Annotated[Union[TextPart, FilePart], Field(discriminator="kind")]

_parts_adapter = TypeAdapter(List[PromptPart])


def build_prompt(*parts) -> List[PromptPart]:
    """Validate a mix of part models and plain dicts into a prompt."""
    return _parts_adapter.validate_python(
        [part.model_dump() if isinstance(part, BaseModel) else part for part in parts]
    )

"""Reader type definitions."""

from pydantic import BaseModel, Field


class ReaderMetadata(BaseModel):
    """Metadata about a sample reader implementation."""

    reader_id: str = Field(description="Unique reader identifier")
    reader_version: str = Field(description="Reader version")
    supported_formats: list[str] = Field(description="Supported file formats")
    extensions: list[str] = Field(description="File extensions (lower-case, with dot)")
    description: str = Field(description="Reader description")
    requires_libraries: list[str] | None = Field(
        None, description="External library dependencies"
    )

from pydantic import BaseModel, Field, model_validator

from utils.format_detect import ImageFormat

# Formats the size-targeted engine has a strategy for
COMPRESSIBLE_FORMATS = (ImageFormat.JPEG, ImageFormat.PNG, ImageFormat.WEBP)


class CompressionTarget(BaseModel):
    """Byte budget plus the codec search space."""

    target_bytes: int = Field(..., gt=0)
    format: ImageFormat = ImageFormat.JPEG
    min_quality: int = Field(default=10, ge=1, le=100)
    max_quality: int = Field(default=100, ge=1, le=100)

    @model_validator(mode="after")
    def _check_bounds(self) -> "CompressionTarget":
        if self.min_quality > self.max_quality:
            raise ValueError("min_quality must be <= max_quality")
        if self.format not in COMPRESSIBLE_FORMATS:
            raise ValueError(f"No size-targeted strategy for format '{self.format.value}'")
        return self


class CompressionResult(BaseModel):
    """Internal result passed from the compression engine to recipes.

    target_met is True only when achieved_bytes <= target_bytes. converged
    means the size landed inside the tolerance band around the target, which
    can sit slightly above the budget. Neither flag set means the budget was
    out of reach and the result holds the smallest encoding observed.
    """

    encoded_bytes: bytes
    quality_used: int
    achieved_bytes: int
    target_bytes: int
    format: ImageFormat
    converged: bool
    target_met: bool
    trials: int
    timed_out: bool = False

    @model_validator(mode="after")
    def _check_size(self) -> "CompressionResult":
        if self.achieved_bytes != len(self.encoded_bytes):
            raise ValueError("achieved_bytes must equal len(encoded_bytes)")
        return self

    def diagnostics(self) -> dict[str, str]:
        return {
            "compressed_size": str(self.achieved_bytes),
            "target_size": str(self.target_bytes),
            "quality_used": str(self.quality_used),
            "trials": str(self.trials),
            "target_met": str(self.target_met).lower(),
            "converged": str(self.converged).lower(),
        }


class EncodedOutput(BaseModel):
    """Image bytes returned by an image-producing recipe."""

    content: bytes
    content_type: str
    suggested_filename: str
    diagnostics: dict[str, str] = Field(default_factory=dict)


class JsonOutput(BaseModel):
    """Body returned by a JSON-producing recipe (OCR, DPI inspection, color sampling)."""

    body: dict
    diagnostics: dict[str, str] = Field(default_factory=dict)


class ToolListResponse(BaseModel):
    """GET /tools response."""

    tools: list[str]
    total_count: int
    families: dict[str, list[str]]


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    collaborators: dict
    codec_gate: dict
    tool_count: int
    version: str

"""Shared data models for the upload pipeline."""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

MB = 1024 * 1024

DEFAULT_ALLOWED_FOLDERS: Tuple[str, ...] = (
    "material-apoio",
    "qrcodes",
    "questoes",
    "redacoes",
    "simulados",
    "videos",
)


class Category(str, Enum):
    """Compression category of an uploaded file."""

    IMAGE = "image"
    PDF = "pdf"
    OTHER = "other"


class ImagePolicy(str, Enum):
    """What the image compressor does when no ladder rung meets the budget."""

    BEST_EFFORT = "best_effort"
    STRICT = "strict"


class LadderRung(BaseModel):
    """One (max width, quality) attempt of the image ladder."""

    model_config = ConfigDict(frozen=True)

    max_width: int = Field(gt=0)
    quality: int = Field(ge=1, le=100)

    def label(self) -> str:
        return f"{self.max_width}px/q{self.quality}"


DEFAULT_LADDER: Tuple[LadderRung, ...] = (
    LadderRung(max_width=1920, quality=80),
    LadderRung(max_width=1920, quality=65),
    LadderRung(max_width=1920, quality=50),
    LadderRung(max_width=1200, quality=40),
    LadderRung(max_width=800, quality=35),
)


class SizeBudgets(BaseModel):
    """Byte ceilings per category."""

    model_config = ConfigDict(frozen=True)

    image: int = Field(default=5 * MB, gt=0)
    pdf: int = Field(default=20 * MB, gt=0)
    other: int = Field(default=20 * MB, gt=0)

    def for_category(self, category: Category) -> int:
        return getattr(self, Category(category).value)


class PdfToolConfig(BaseModel):
    """Settings for the external PDF optimization tool (Ghostscript)."""

    model_config = ConfigDict(frozen=True)

    command: str = "gs"
    resolution_dpi: int = Field(default=150, gt=0)
    timeout_seconds: float = Field(default=180.0, gt=0)
    pdf_settings: str = "/ebook"


class PipelineConfig(BaseModel):
    """Configuration for the compression pipeline.

    Built once at process start and passed by reference to the dispatcher
    and the compressors.
    """

    model_config = ConfigDict(frozen=True)

    budgets: SizeBudgets = Field(default_factory=SizeBudgets)
    ladder: Tuple[LadderRung, ...] = DEFAULT_LADDER
    image_policy: ImagePolicy = ImagePolicy.BEST_EFFORT
    lossy_format: str = "JPEG"
    pdf: PdfToolConfig = Field(default_factory=PdfToolConfig)
    upload_dir: str = "/uploads"
    allowed_folders: Tuple[str, ...] = DEFAULT_ALLOWED_FOLDERS
    base_url: str = "http://localhost:4000"

    @field_validator("ladder")
    @classmethod
    def _check_ladder(cls, ladder: Tuple[LadderRung, ...]) -> Tuple[LadderRung, ...]:
        if not ladder:
            raise ValueError("ladder must contain at least one rung")
        for previous, current in zip(ladder, ladder[1:]):
            if current.max_width > previous.max_width:
                raise ValueError(
                    f"ladder widths must not increase ({previous.label()} -> {current.label()})"
                )
            if current.quality >= previous.quality:
                raise ValueError(
                    f"ladder qualities must strictly decrease ({previous.label()} -> {current.label()})"
                )
        return ladder

    @field_validator("lossy_format")
    @classmethod
    def _check_lossy_format(cls, value: str) -> str:
        value = value.upper()
        if value not in ("JPEG", "WEBP"):
            raise ValueError(f"unsupported lossy format: {value}")
        return value


class CompressionPass(BaseModel):
    """Outcome of one attempted transformation."""

    label: str
    max_width: Optional[int] = None
    quality: Optional[int] = None
    size: Optional[int] = None
    accepted: bool = False
    error: str = ""


class CompressionResult(BaseModel):
    """Result of running the pipeline on a single uploaded file."""

    path: str
    category: Category
    original_size: int
    final_size: int
    budget: int
    within_budget: bool
    strategy: str = ""
    passes: List[CompressionPass] = Field(default_factory=list)
    processing_time: float = 0.0

    def to_response(self) -> Dict[str, Any]:
        """JSON-serializable payload handed back to the HTTP layer."""
        return {
            "size": self.final_size,
            "category": self.category.value,
            "original_size": self.original_size,
            "budget": self.budget,
            "within_budget": self.within_budget,
            "strategy": self.strategy,
        }


class FileOutcome(BaseModel):
    """Per-file outcome of a CLI or batch run."""

    source_path: str
    success: bool = False
    error: str = ""
    error_type: str = ""
    http_status: int = 200
    result: Optional[CompressionResult] = None

    def to_response(self) -> Dict[str, Any]:
        if self.success and self.result is not None:
            return {"path": self.source_path, **self.result.to_response()}
        return {
            "path": self.source_path,
            "error": self.error,
            "error_type": self.error_type,
            "status": self.http_status,
        }

"""Build a PipelineConfig from environment variables."""

from typing import Annotated, Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, SettingsError

from .exceptions import ConfigurationError
from .models import ImagePolicy, LadderRung, PipelineConfig


def parse_ladder(value: str) -> Tuple[LadderRung, ...]:
    """Parse ``"1920:80,1920:65,800:35"`` into ladder rungs."""
    rungs = []
    for chunk in value.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            width, quality = chunk.split(":")
            rungs.append(LadderRung(max_width=int(width), quality=int(quality)))
        except (ValueError, ValidationError) as exc:
            raise ValueError(f"Invalid ladder rung '{chunk}': {exc}") from exc
    return tuple(rungs)


def _present(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class PipelineSettings(BaseSettings):
    """
    Raw pipeline settings as they appear in the environment.

    Every field maps to the upper-case variable of the same name. Unset
    fields stay ``None`` so that ``PipelineConfig`` keeps its own defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    image_max_bytes: Optional[int] = None
    pdf_max_bytes: Optional[int] = None
    other_max_bytes: Optional[int] = None

    image_policy: Optional[ImagePolicy] = None
    compression_ladder: Annotated[Optional[Tuple[LadderRung, ...]], NoDecode] = None
    lossy_format: Optional[str] = None

    pdf_tool_command: Optional[str] = None
    pdf_image_dpi: Optional[int] = None
    pdf_tool_timeout: Optional[float] = None

    upload_dir: Optional[str] = None
    allowed_folders: Annotated[Optional[Tuple[str, ...]], NoDecode] = None
    base_url: Optional[str] = None

    @field_validator("image_policy", mode="before")
    @classmethod
    def _lowercase_policy(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("compression_ladder", mode="before")
    @classmethod
    def _split_ladder(cls, value: Any) -> Any:
        return parse_ladder(value) if isinstance(value, str) else value

    @field_validator("allowed_folders", mode="before")
    @classmethod
    def _split_folders(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(f.strip() for f in value.split(",") if f.strip())
        return value

    @classmethod
    def from_mapping(cls, environ: Mapping[str, str]) -> "PipelineSettings":
        """Read settings from ``environ`` alone, ignoring the process environment."""
        values = {}
        for name, field in cls.model_fields.items():
            raw = environ.get(name.upper())
            values[name] = field.get_default() if raw in (None, "") else raw
        return cls(_env_file=None, **values)

    def to_config(self) -> PipelineConfig:
        budgets = _present(
            {
                "image": self.image_max_bytes,
                "pdf": self.pdf_max_bytes,
                "other": self.other_max_bytes,
            }
        )
        pdf = _present(
            {
                "command": self.pdf_tool_command,
                "resolution_dpi": self.pdf_image_dpi,
                "timeout_seconds": self.pdf_tool_timeout,
            }
        )
        values = _present(
            {
                "image_policy": self.image_policy,
                "ladder": self.compression_ladder,
                "lossy_format": self.lossy_format,
                "upload_dir": self.upload_dir,
                "allowed_folders": self.allowed_folders,
                "base_url": self.base_url,
            }
        )
        return PipelineConfig(budgets=budgets, pdf=pdf, **values)


def load_config(environ: Optional[Mapping[str, str]] = None) -> PipelineConfig:
    """
    Load pipeline configuration from the environment.

    Unset variables keep the model defaults. When ``environ`` is given it
    replaces both the process environment and the ``.env`` file.

    Environment Variables:
        IMAGE_MAX_BYTES, PDF_MAX_BYTES, OTHER_MAX_BYTES: category budgets
        IMAGE_POLICY: "best_effort" or "strict"
        COMPRESSION_LADDER: comma separated "width:quality" rungs
        LOSSY_FORMAT: "JPEG" or "WEBP"
        PDF_TOOL_COMMAND, PDF_IMAGE_DPI, PDF_TOOL_TIMEOUT: Ghostscript settings
        UPLOAD_DIR, ALLOWED_FOLDERS, BASE_URL: storage layout

    Raises:
        ConfigurationError: If any value is malformed.
    """
    try:
        if environ is None:
            settings = PipelineSettings()
        else:
            settings = PipelineSettings.from_mapping(environ)
        return settings.to_config()
    except (ValidationError, SettingsError) as exc:
        raise ConfigurationError(f"Invalid pipeline configuration: {exc}") from exc

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - Python <3.11 not supported per pyproject
    tomllib = None  # type: ignore

from tomlkit import dumps as toml_dumps

from .errors import ConfigError


DEFAULT_CONFIG_PATH = Path("~/.config/img2heic/config.toml").expanduser()
ENV_PREFIX = "IMG2HEIC_"

DEFAULT_QUALITY = 65
LOSSLESS_QUALITY = 100
MIN_QUALITY = 1
MAX_QUALITY = 100

# Lowercase "jpg"/"jpeg" are not part of the default set; only the uppercase
# variants are matched unless --jpg/--jpeg/--ext asks for them.
DEFAULT_EXTENSIONS: Tuple[str, ...] = (
    "png", "gif", "bmp", "tiff", "tif", "webp",
    "PNG", "JPG", "JPEG", "GIF", "BMP", "TIFF", "TIF", "WEBP",
)

# Single-format CLI flags and the extension set each one selects.
FORMAT_FLAGS: Dict[str, Tuple[str, ...]] = {
    "png": ("png", "PNG"),
    "jpg": ("jpg", "JPG"),
    "jpeg": ("jpeg", "JPEG"),
    "gif": ("gif", "GIF"),
    "bmp": ("bmp", "BMP"),
    "tiff": ("tiff", "TIFF"),
    "tif": ("tif", "TIF"),
    "webp": ("webp", "WEBP"),
}


class Tool(str, Enum):
    MAGICK = "magick"
    FFMPEG = "ffmpeg"
    AUTO = "auto"


TOOL_CHOICES = tuple(t.value for t in Tool)

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def parse_quality(value: Any) -> int:
    """Validate a quality value from the CLI, environment or config file.

    Accepts ints or strings of decimal digits in 1..100; anything else raises
    ValueError with the user-facing message.
    """
    if isinstance(value, bool):
        raise ValueError("Quality must be between 1 and 100")
    if isinstance(value, int):
        q = value
    else:
        text = str(value).strip()
        if not (text.isascii() and text.isdigit()):
            raise ValueError("Quality must be between 1 and 100")
        q = int(text)
    if not MIN_QUALITY <= q <= MAX_QUALITY:
        raise ValueError("Quality must be between 1 and 100")
    return q


def parse_ext_list(value: str) -> List[str]:
    """Split a comma-separated extension list ("png,jpg") into extensions."""
    exts = [e.strip().lstrip(".") for e in str(value).split(",")]
    exts = [e for e in exts if e]
    if not exts:
        raise ValueError("--ext requires a comma-separated list")
    return exts


def dedupe(items: Iterable[str]) -> Tuple[str, ...]:
    seen: set[str] = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return tuple(out)


class Img2HeicSettings(BaseSettings):
    """Settings for img2heic.

    Priority (lowest -> highest):
    - Class defaults below
    - TOML file at `config_path` (default: ~/.config/img2heic/config.toml)
    - Environment variables with prefix IMG2HEIC_
    - CLI overrides passed to `load(overrides=...)`
    """

    # Logging
    log_level: Optional[str] = Field(default=None, description="Console log level; derived from verbose when unset")
    log_json: Optional[str] = Field(default=None, description="Path for structured JSON log file")

    # Conversion
    quality: int = Field(default=DEFAULT_QUALITY, description="Compression quality 1..100 (higher is better)")
    lossless: bool = Field(default=False, description="Lossless mode; forces quality to 100")
    tool: str = Field(default=Tool.MAGICK.value, description="Encoder backend: magick, ffmpeg or auto")
    extensions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EXTENSIONS),
        description="Case-sensitive file extensions to convert (no leading dot)",
    )

    # File handling
    delete_originals: bool = Field(default=False, description="Delete sources after successful conversion")
    overwrite: bool = Field(default=False, description="Overwrite existing .heic outputs")
    dry_run: bool = Field(default=False, description="Report actions without touching any file")
    verbose: bool = Field(default=True, description="Report progress; false is --silent")

    # Execution
    parallel: bool = Field(default=True, description="Run conversions on a worker pool")
    workers: Optional[int] = Field(default=None, ge=1, description="Parallel workers; None=auto (CPU cores)")
    fail_on_error: bool = Field(default=False, description="Exit with code 2 when any file failed")

    # Config source/path (not persisted as part of effective config when writing)
    config_path: Path = Field(default=DEFAULT_CONFIG_PATH, exclude=True)

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    @field_validator("quality", mode="before")
    @classmethod
    def _check_quality(cls, v: Any) -> int:
        return parse_quality(v)

    @field_validator("tool", mode="before")
    @classmethod
    def _check_tool(cls, v: Any) -> str:
        if isinstance(v, Tool):
            return v.value
        if v not in TOOL_CHOICES:
            raise ValueError("Tool must be 'magick', 'ffmpeg', or 'auto'")
        return v

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}")
        return level

    @staticmethod
    def default_config_path() -> Path:
        return DEFAULT_CONFIG_PATH

    @classmethod
    def _toml_file_source(cls, config_path: Path) -> Dict[str, Any]:
        """Read settings from a TOML file if it exists; return dict values.

        Unknown keys are ignored by pydantic via extra="ignore".
        """
        if not config_path or not config_path.exists():
            return {}
        if tomllib is None:
            return {}
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            return {}
        return data

    @classmethod
    def load(
        cls,
        *,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "Img2HeicSettings":
        """Load settings from defaults + TOML + env + CLI overrides.

        - config_path: path to TOML config; defaults to ~/.config/img2heic/config.toml
        - overrides: dict of CLI values (None values are ignored)

        Raises ConfigError when any layer holds an invalid value.
        """
        cp = config_path or DEFAULT_CONFIG_PATH
        file_values = cls._toml_file_source(cp)
        non_none = {k: v for k, v in (overrides or {}).items() if v is not None}
        try:
            # Init kwargs outrank env in pydantic-settings, so layer explicitly:
            # only fields actually set from the environment are kept here
            env_values = cls().model_dump(exclude_unset=True)
            merged = {**file_values, **env_values, **non_none}
            settings = cls(**merged)
        except ValidationError as e:
            raise ConfigError(_validation_message(e)) from e
        settings.config_path = cp
        return settings

    def to_toml(self) -> str:
        """Serialize effective settings (excluding ephemeral fields) to TOML string."""
        data = self.model_dump(exclude={"config_path"})
        # TOML has no null
        data = {k: v for k, v in data.items() if v is not None}
        return toml_dumps(data)

    def write(self, path: Optional[Path] = None) -> Path:
        """Write effective config to TOML at `path` (or default path). Creates parent dirs.

        Returns the path written.
        """
        target = path or self.config_path or DEFAULT_CONFIG_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_toml(), encoding="utf-8")
        return target


def _validation_message(exc: ValidationError) -> str:
    msgs = []
    for err in exc.errors():
        msg = str(err.get("msg", ""))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msgs.append(msg if loc in ("quality", "tool") else f"{loc}: {msg}")
    return "; ".join(msgs)


@dataclass(frozen=True)
class RunConfig:
    """Effective configuration of one run. Built once, never mutated."""

    quality: int
    lossless: bool
    delete_originals: bool
    overwrite: bool
    parallel: bool
    dry_run: bool
    verbose: bool
    tool: Tool
    extensions: Tuple[str, ...]
    input_dir: Path
    output_dir: Path
    workers: Optional[int] = None
    fail_on_error: bool = False

    def __post_init__(self) -> None:
        if not MIN_QUALITY <= self.quality <= MAX_QUALITY:
            raise ConfigError(f"quality must be between 1 and 100, got {self.quality}")
        if self.lossless and self.quality != LOSSLESS_QUALITY:
            raise ConfigError("lossless runs must use quality 100")


def resolve_run_config(settings: Img2HeicSettings, positionals: Sequence[str] = ()) -> RunConfig:
    """Merge validated settings with positional directories into a RunConfig.

    positionals: [input_dir] [output_dir]; input defaults to ".", output to input.
    Lossless always wins over any quality value.
    """
    if len(positionals) > 2:
        raise ConfigError("Too many arguments")
    input_dir = positionals[0] if len(positionals) >= 1 and positionals[0] else "."
    output_dir = positionals[1] if len(positionals) == 2 and positionals[1] else input_dir

    quality = LOSSLESS_QUALITY if settings.lossless else settings.quality
    extensions = dedupe(settings.extensions)
    if not extensions:
        raise ConfigError("No file extensions selected")

    return RunConfig(
        quality=quality,
        lossless=settings.lossless,
        delete_originals=settings.delete_originals,
        overwrite=settings.overwrite,
        parallel=settings.parallel,
        dry_run=settings.dry_run,
        verbose=settings.verbose,
        tool=Tool(settings.tool),
        extensions=extensions,
        input_dir=Path(input_dir),
        output_dir=Path(output_dir),
        workers=settings.workers,
        fail_on_error=settings.fail_on_error,
    )


def cli_overrides_from_args(args: Any) -> Dict[str, Any]:
    """Extract known settings keys from argparse Namespace into an overrides dict.

    Unknown keys are ignored; None values are preserved for filtering by `load()`.
    """
    keys = {
        "log_level",
        "log_json",
        "quality",
        "lossless",
        "tool",
        "extensions",
        "delete_originals",
        "overwrite",
        "dry_run",
        "verbose",
        "parallel",
        "workers",
        "fail_on_error",
    }
    result: Dict[str, Any] = {}
    for k in keys:
        if hasattr(args, k):
            result[k] = getattr(args, k)
    return result

"""Per-file conversion: skip, simulate, or encode one source."""
from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from loguru import logger

from .config import RunConfig
from .encoder import Encoder, get_encoder
from .logging import log_event, truncate
from .scanner import ConversionTask
from .selector import ResolvedTool


OutcomeKind = Literal["converted", "skipped", "failed", "dry_run"]

_TOOL_LABEL = {ResolvedTool.MAGICK: "ImageMagick", ResolvedTool.FFMPEG: "FFmpeg"}


@dataclass(frozen=True)
class TaskOutcome:
    kind: OutcomeKind
    reason: str = ""
    # True when a new output landed at dest_path, even if a later step failed
    output_written: bool = False
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.kind != "failed"


def _is_same_file(src: Path, dest: Path) -> bool:
    try:
        return src.samefile(dest)
    except OSError:
        return False


def execute_task(
    task: ConversionTask,
    cfg: RunConfig,
    tool: ResolvedTool,
    *,
    encoder: Optional[Encoder] = None,
) -> TaskOutcome:
    """Run one task and report what happened.

    - Source and output are the same file: skipped, even with overwrite.
    - Existing output and no overwrite: skipped, the backend is not called.
    - Dry run: nothing is written or deleted.
    - Backend failure: failed with the backend's stderr; never raises.
    - Source deletion failing after a good encode: failed, output_written=True.
    """
    src = task.source_path
    dest = task.dest_path
    t0 = time.time()

    # e.g. --ext heic, or a.HEIC vs a.heic on a case-insensitive filesystem
    if _is_same_file(src, dest):
        log_event("convert", msg="source is the output", level="DEBUG", file=str(src), status="skip")
        if cfg.verbose:
            logger.info(f"Skipping {src} (source is the output file)")
        return TaskOutcome("skipped", "source is the output")

    if dest.exists() and not cfg.overwrite:
        log_event("convert", msg="output exists", level="DEBUG", file=str(src), status="skip")
        if cfg.verbose:
            logger.info(f"Skipping {src} (output file already exists)")
        return TaskOutcome("skipped", "output exists")

    if cfg.dry_run:
        logger.info(f"Would convert {src} -> {dest}")
        return TaskOutcome("dry_run")

    if cfg.verbose:
        logger.info(f"Converting {src} -> {dest}")

    enc = encoder or get_encoder(tool)
    rc, err = enc(src, dest, quality=cfg.quality, verbose=cfg.verbose)
    elapsed = time.time() - t0
    if rc != 0:
        reason = truncate(err) or f"exit code {rc}"
        log_event(
            "convert",
            msg=f"Failed to convert {src} using {_TOOL_LABEL[ResolvedTool(tool)]}: {reason}",
            level="ERROR",
            file=str(src),
            status="error",
            rc=rc,
            elapsed_ms=int(elapsed * 1000),
        )
        return TaskOutcome("failed", reason, elapsed_s=elapsed)

    log_event(
        "convert", msg="encode complete", level="DEBUG", file=str(src), status="ok", elapsed_ms=int(elapsed * 1000)
    )

    if cfg.delete_originals:
        try:
            Path(src).unlink()
        except OSError as e:
            reason = f"converted, but deleting the original failed: {e}"
            logger.error(f"{src}: {reason}")
            return TaskOutcome("failed", reason, output_written=True, elapsed_s=elapsed)
        logger.debug(f"Deleted original {src}")

    return TaskOutcome("converted", output_written=True, elapsed_s=elapsed)

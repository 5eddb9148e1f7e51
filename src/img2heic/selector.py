"""Pick the concrete encoder backend for a run."""
from __future__ import annotations

from enum import Enum
from typing import Callable

from loguru import logger

from .config import Tool
from .errors import BackendUnavailableError
from .tools import FFMPEG_BIN, MAGICK_BIN, probe_tool


class ResolvedTool(str, Enum):
    MAGICK = "magick"
    FFMPEG = "ffmpeg"


# Auto mode preference, first available wins.
AUTO_PREFERENCE = (ResolvedTool.FFMPEG, ResolvedTool.MAGICK)

_BINARIES = {ResolvedTool.MAGICK: MAGICK_BIN, ResolvedTool.FFMPEG: FFMPEG_BIN}

_MISSING_MSG = {
    ResolvedTool.MAGICK: "ImageMagick (magick command) not found. Please install it.",
    ResolvedTool.FFMPEG: "FFmpeg not found. Please install it.",
}


def select_backend(
    tool: Tool,
    *,
    probe: Callable[[str], bool] = probe_tool,
    verbose: bool = True,
) -> ResolvedTool:
    """Resolve `tool` against what is installed.

    An explicitly requested tool must be present; there is no fallback to the
    other one. Auto prefers ffmpeg, then magick.
    """
    tool = Tool(tool)
    if tool is Tool.AUTO:
        selected = None
        for cand in AUTO_PREFERENCE:
            if probe(_BINARIES[cand]):
                selected = cand
                break
        if selected is None:
            raise BackendUnavailableError(
                "Neither FFmpeg nor ImageMagick found. Please install one of them."
            )
    else:
        selected = ResolvedTool(tool.value)
        if not probe(_BINARIES[selected]):
            raise BackendUnavailableError(_MISSING_MSG[selected])

    if verbose:
        logger.info(f"Using {selected.value} for conversion.")
    return selected

"""Encoder command construction and execution.

- ImageMagick: `magick SRC -quality Q HEIC:OUT`, quality passed through (1-100).
- FFmpeg: libx265 still image muxed as HEIC, quality mapped onto CRF 0-51.

Outputs are written to a temporary file in the destination directory and
renamed onto the destination on success, so truncated files aren't left behind
on failure.
"""
from __future__ import annotations

import os
import shlex
import subprocess
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Tuple

from loguru import logger

from .selector import ResolvedTool
from .tools import FFMPEG_BIN, MAGICK_BIN

Encoder = Callable[..., Tuple[int, str]]

CRF_MIN = 0
CRF_MAX = 51


def ffmpeg_quality(quality: int) -> int:
    """Map 1-100 quality (higher is better) onto libx265 CRF (lower is better)."""
    crf = CRF_MAX - int(quality / 2)
    return max(CRF_MIN, min(CRF_MAX, crf))


def build_magick_cmd(src: Path, out: Path, quality: int) -> List[str]:
    return [
        MAGICK_BIN,
        str(src),
        "-quality",
        str(quality),
        f"HEIC:{out}",  # explicit format; temp names don't end in .heic
    ]


def build_ffmpeg_cmd(src: Path, out: Path, crf: int, *, verbose: bool = True) -> List[str]:
    cmd = [
        FFMPEG_BIN,
        "-nostdin",
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
    ]
    if not verbose:
        cmd += ["-v", "quiet"]
    cmd += [
        "-i",
        str(src),
        "-vf",
        "scale=iw:ih",  # keep original dimensions
        "-c:v",
        "libx265",
        "-crf",
        str(crf),
        "-f",
        "heic",
        str(out),
    ]
    return cmd


def cmd_to_string(cmd: List[str]) -> str:
    return " ".join(shlex.quote(p) for p in cmd)


def run_tool(cmd: List[str]) -> tuple[int, str]:
    """Run an encoder and return the exit code and stderr.

    The child is waited for (or killed) before this returns, on every path.
    """
    try:
        proc = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except OSError as e:
        return 127, f"{cmd[0]}: {e}"
    return proc.returncode, proc.stderr or ""


def _temp_out_path(final_path: Path) -> Path:
    """Return a unique temp file path in the same directory as final_path."""
    suffix = f".part-{os.getpid()}-{uuid.uuid4().hex[:8]}"
    return final_path.with_name(final_path.name + suffix)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove temporary file {path}: {e}")


def _encode_atomic(dest: Path, build: Callable[[Path], List[str]], label: str) -> tuple[int, str]:
    out_tmp = _temp_out_path(dest)
    cmd = build(out_tmp)
    logger.debug("Running {}: {}", label, cmd_to_string(cmd))
    try:
        rc, err = run_tool(cmd)
        if rc != 0:
            return rc, err or f"{label} exited with code {rc}"
        # Atomic replace/move
        try:
            os.replace(str(out_tmp), str(dest))
        except OSError as e:
            err_str = f"Rename failed: {e}"
            logger.error(err_str)
            return 1, err_str
        return 0, ""
    finally:
        _discard(out_tmp)


def encode_with_magick(src: Path, dest: Path, *, quality: int, verbose: bool = True) -> tuple[int, str]:
    """Encode with ImageMagick writing atomically to dest.

    Returns (0, "") on success, (non-zero, stderr) on failure.
    """
    return _encode_atomic(
        Path(dest),
        lambda out: build_magick_cmd(Path(src), out, quality),
        "magick",
    )


def encode_with_ffmpeg(src: Path, dest: Path, *, quality: int, verbose: bool = True) -> tuple[int, str]:
    """Encode with FFmpeg/libx265 writing atomically to dest."""
    crf = ffmpeg_quality(quality)
    return _encode_atomic(
        Path(dest),
        lambda out: build_ffmpeg_cmd(Path(src), out, crf, verbose=verbose),
        "ffmpeg",
    )


ENCODERS: Dict[ResolvedTool, Encoder] = {
    ResolvedTool.MAGICK: encode_with_magick,
    ResolvedTool.FFMPEG: encode_with_ffmpeg,
}


def get_encoder(tool: ResolvedTool) -> Encoder:
    return ENCODERS[ResolvedTool(tool)]

"""Encoder availability checks for ImageMagick and FFmpeg.

Uses only the Python standard library.
"""
from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional


MAGICK_BIN = "magick"
FFMPEG_BIN = "ffmpeg"


@dataclass
class MagickStatus:
    available: bool
    magick_path: Optional[str] = None
    magick_version: Optional[str] = None
    has_heic: Optional[bool] = None
    error: Optional[str] = None


@dataclass
class FFmpegStatus:
    available: bool
    ffmpeg_path: Optional[str] = None
    ffmpeg_version: Optional[str] = None
    has_libx265: Optional[bool] = None
    error: Optional[str] = None


def _run(cmd: list[str]) -> tuple[int, str, str]:
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            check=False,
            text=True,
        )
        return proc.returncode, proc.stdout, proc.stderr
    except OSError as exc:
        return 1, "", str(exc)


def probe_tool(name: str) -> bool:
    """Return True when the executable `name` is reachable on PATH."""
    return shutil.which(name) is not None


def _first_line(text: str) -> Optional[str]:
    for line in (text.splitlines() if text else []):
        s = line.strip()
        if s:
            return s
    return None


def probe_magick() -> MagickStatus:
    path = shutil.which(MAGICK_BIN)
    if not path:
        return MagickStatus(available=False, error="magick not found in PATH")

    rc_v, out_v, err_v = _run([path, "-version"])
    version = _first_line(out_v)

    # Formats list (stdout); HEIC support depends on the libheif delegate
    rc_f, out_f, _ = _run([path, "-list", "format"])
    has_heic = rc_f == 0 and "heic" in (out_f or "").lower()

    return MagickStatus(
        available=(rc_v == 0),
        magick_path=path,
        magick_version=version,
        has_heic=has_heic,
        error=None if rc_v == 0 else (err_v or "magick -version failed"),
    )


def probe_ffmpeg() -> FFmpegStatus:
    path = shutil.which(FFMPEG_BIN)
    if not path:
        return FFmpegStatus(available=False, error="ffmpeg not found in PATH")

    # Version (stdout)
    rc_v, out_v, err_v = _run([path, "-version"])
    version = _first_line(out_v)

    # Encoders (stdout)
    rc_e, out_e, _ = _run([path, "-hide_banner", "-encoders"])
    has_x265 = "libx265" in (out_e or "").lower()

    return FFmpegStatus(
        available=(rc_v == 0),
        ffmpeg_path=path,
        ffmpeg_version=version,
        has_libx265=(has_x265 if rc_e == 0 else False),
        error=None if rc_v == 0 else (err_v or "ffmpeg -version failed"),
    )


if __name__ == "__main__":
    print(probe_magick())
    print(probe_ffmpeg())

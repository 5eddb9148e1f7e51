"""Source discovery: input directory + extensions -> ordered conversion tasks."""
from __future__ import annotations

import os
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from loguru import logger

from .errors import InputDirError


OUTPUT_SUFFIX = ".heic"


@dataclass(frozen=True)
class ConversionTask:
    source_path: Path
    dest_path: Path


def check_input_dir(input_dir: Path) -> Path:
    if not Path(input_dir).is_dir():
        raise InputDirError(f"Input directory '{input_dir}' does not exist")
    return Path(input_dir)


def list_dir(path: Path, suffix: str) -> List[Path]:
    """Regular files directly in `path` whose name ends with `suffix`, sorted by name.

    Matching is case-sensitive. Hidden files are ignored, like a shell glob.
    """
    found: List[Path] = []
    with os.scandir(path) as it:
        for entry in it:
            name = entry.name
            if name.startswith(".") or not name.endswith(suffix):
                continue
            try:
                if not entry.is_file():
                    continue
            except OSError:
                continue
            found.append(Path(entry.path))
    found.sort(key=lambda p: p.name)
    return found


def output_name(source: Path) -> str:
    """`<stem>.heic`, where stem drops only the final extension."""
    name = source.name
    dot = name.rfind(".")
    stem = name[:dot] if dot > 0 else name
    return stem + OUTPUT_SUFFIX


def discover_tasks(input_dir: Path, extensions: Iterable[str], output_dir: Path) -> List[ConversionTask]:
    """Build tasks for every matching file, grouped by extension in the order given.

    Two sources with the same stem map to the same destination; both tasks are
    kept and a warning names the shared path.
    """
    input_dir = Path(input_dir)
    output_dir = Path(output_dir)
    tasks: List[ConversionTask] = []
    for ext in extensions:
        for src in list_dir(input_dir, f".{ext}"):
            if not src.exists():
                continue
            tasks.append(ConversionTask(source_path=src, dest_path=output_dir / output_name(src)))

    for dest, n in find_collisions(tasks).items():
        logger.warning(f"{n} sources map to {dest}; only one output will be kept")
    return tasks


def find_collisions(tasks: Iterable[ConversionTask]) -> dict[Path, int]:
    counts = Counter(t.dest_path for t in tasks)
    return {dest: n for dest, n in counts.items() if n > 1}

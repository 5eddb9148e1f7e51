"""Run orchestration: backend selection, discovery, and task execution."""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from .config import RunConfig
from .encoder import Encoder
from .errors import Img2HeicError
from .logging import log_event
from .scanner import ConversionTask, check_input_dir, discover_tasks
from .scheduler import WorkerPool
from .selector import ResolvedTool, select_backend
from .task import TaskOutcome, execute_task
from .tools import probe_tool


EXIT_OK = 0
EXIT_FATAL = 1
EXIT_WITH_FILE_ERRORS = 2

_STATUS_LABEL = {"converted": "OK", "skipped": "SKIP", "failed": "FAIL", "dry_run": "DRY"}


@dataclass
class RunSummary:
    total: int = 0
    converted: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: int = 0
    elapsed_s: float = 0.0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def record(self, task: ConversionTask, outcome: TaskOutcome) -> None:
        setattr(self, outcome.kind, getattr(self, outcome.kind) + 1)
        if outcome.kind == "failed":
            self.failures.append((str(task.source_path), outcome.reason))

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "converted": self.converted,
            "skipped": self.skipped,
            "failed": self.failed,
            "dry_run": self.dry_run,
        }


def effective_workers(cfg: RunConfig) -> int:
    return cfg.workers or (os.cpu_count() or 1)


def parallel_available(workers: int) -> bool:
    return workers >= 2


def group_lanes(tasks: List[ConversionTask]) -> List[List[ConversionTask]]:
    """Group tasks sharing a destination, keeping discovery order within and across lanes."""
    lanes: Dict[Path, List[ConversionTask]] = {}
    for t in tasks:
        lanes.setdefault(t.dest_path, []).append(t)
    return list(lanes.values())


def run_sequential(
    tasks: List[ConversionTask],
    cfg: RunConfig,
    tool: ResolvedTool,
    *,
    encoder: Optional[Encoder] = None,
) -> RunSummary:
    summary = RunSummary(total=len(tasks))
    t0 = time.time()
    for i, task in enumerate(tasks, start=1):
        if cfg.verbose:
            logger.info(f"[{i}/{len(tasks)}] Processing {task.source_path.name}")
        outcome = execute_task(task, cfg, tool, encoder=encoder)
        summary.record(task, outcome)
    summary.elapsed_s = time.time() - t0
    return summary


def run_parallel(
    tasks: List[ConversionTask],
    cfg: RunConfig,
    tool: ResolvedTool,
    workers: int,
    *,
    encoder: Optional[Encoder] = None,
) -> RunSummary:
    """Run tasks on a worker pool; returns once every task has finished.

    Tasks that share a destination form one lane and run in discovery order on
    the same worker, so the surviving output matches a sequential run.
    """
    summary = RunSummary(total=len(tasks))
    lanes = group_lanes(tasks)
    t0 = time.time()

    def _lane(lane: List[ConversionTask]) -> List[TaskOutcome]:
        return [execute_task(t, cfg, tool, encoder=encoder) for t in lane]

    done = 0
    # Bounded processing to keep <= ~2x workers in flight
    bound = max(1, workers * 2)
    with WorkerPool(max_workers=max(1, min(workers, len(lanes)))) as pool:
        for lane, outcomes in pool.imap_unordered_bounded(_lane, lanes, max_pending=bound):
            for task, outcome in zip(lane, outcomes):
                done += 1
                summary.record(task, outcome)
                if cfg.verbose:
                    logger.info(f"[{done}/{len(tasks)}] {_STATUS_LABEL[outcome.kind]:<4} {task.source_path.name}")
    summary.elapsed_s = time.time() - t0
    return summary


def run_tasks(
    tasks: List[ConversionTask],
    cfg: RunConfig,
    tool: ResolvedTool,
    *,
    encoder: Optional[Encoder] = None,
) -> RunSummary:
    """Execute all tasks in parallel or sequential mode per `cfg.parallel`."""
    if cfg.parallel:
        workers = effective_workers(cfg)
        if parallel_available(workers):
            if cfg.verbose:
                logger.info(f"Using parallel processing ({workers} workers)")
            return run_parallel(tasks, cfg, tool, workers, encoder=encoder)
        # Warn only when the CPU count is the limit
        if cfg.workers is None:
            logger.warning("Parallel processing unavailable (single CPU). Falling back to sequential processing.")
    return run_sequential(tasks, cfg, tool, encoder=encoder)


def write_summary_json(path: Path, cfg: RunConfig, tool: ResolvedTool, summary: RunSummary) -> None:
    data: Dict[str, Any] = {
        "input_dir": str(cfg.input_dir),
        "output_dir": str(cfg.output_dir),
        "tool": tool.value,
        "quality": cfg.quality,
        "lossless": cfg.lossless,
        "dry_run": cfg.dry_run,
        "parallel": cfg.parallel,
        "counts": summary.counts,
        "failures": [{"source": s, "reason": r} for s, r in summary.failures],
        "elapsed_s": round(summary.elapsed_s, 3),
        "timestamp": int(time.time()),
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def cmd_convert_dir(
    cfg: RunConfig,
    *,
    probe: Callable[[str], bool] = probe_tool,
    encoder: Optional[Encoder] = None,
    log_json_path: Optional[str] = None,
) -> Tuple[int, RunSummary]:
    """Convert every matching image under `cfg.input_dir`.

    Returns (exit_code, summary). Fatal problems (no backend, missing input
    directory) return exit code 1 before any file is touched. Failed files only
    change the exit code when `cfg.fail_on_error` is set.
    """
    if cfg.lossless and cfg.verbose:
        logger.info("Lossless mode enabled. Using quality = 100.")
    try:
        tool = select_backend(cfg.tool, probe=probe, verbose=cfg.verbose)
        check_input_dir(cfg.input_dir)
        if not cfg.dry_run:
            cfg.output_dir.mkdir(parents=True, exist_ok=True)
    except Img2HeicError as e:
        logger.error(str(e))
        return EXIT_FATAL, RunSummary()
    except OSError as e:
        logger.error(f"Cannot create output directory '{cfg.output_dir}': {e}")
        return EXIT_FATAL, RunSummary()

    tasks = discover_tasks(cfg.input_dir, cfg.extensions, cfg.output_dir)
    if not tasks:
        logger.warning(f"No supported image files found in {cfg.input_dir}")
        return EXIT_OK, RunSummary()

    if cfg.verbose:
        logger.info(f"Found {len(tasks)} images to convert")

    summary = run_tasks(tasks, cfg, tool, encoder=encoder)

    log_event(
        "summary",
        msg=f"Total: {summary.total} | Converted: {summary.converted} | Skipped: {summary.skipped}"
        f" | Dry run: {summary.dry_run} | Failed: {summary.failed} | Time: {summary.elapsed_s:.2f}s",
        level="WARNING" if summary.failed else "INFO",
        **summary.counts,
    )
    for src, reason in summary.failures:
        logger.debug(f"failed: {src}: {reason}")

    if log_json_path:
        summary_path = Path(str(log_json_path) + ".summary.json")
        try:
            write_summary_json(summary_path, cfg, tool, summary)
            logger.debug(f"Run summary written: {summary_path}")
        except OSError as e:
            logger.warning(f"Failed to write run summary JSON: {e}")

    if cfg.verbose:
        logger.info("All conversions done.")

    if summary.failed and cfg.fail_on_error:
        return EXIT_WITH_FILE_ERRORS, summary
    return EXIT_OK, summary

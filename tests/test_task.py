from pathlib import Path
from unittest.mock import patch

from img2heic.scanner import ConversionTask
from img2heic.selector import ResolvedTool
from img2heic.task import execute_task

from conftest import FakeEncoder


def _task(cfg, name="b.png"):
    src = cfg.input_dir / name
    src.write_bytes(b"png")
    return ConversionTask(src, cfg.output_dir / (src.stem + ".heic"))


def test_existing_output_is_skipped(make_cfg, fake_encoder):
    cfg = make_cfg()
    task = _task(cfg)
    task.dest_path.write_bytes(b"old")

    outcome = execute_task(task, cfg, ResolvedTool.MAGICK, encoder=fake_encoder)

    assert outcome.kind == "skipped"
    assert outcome.reason == "output exists"
    assert fake_encoder.calls == []
    assert task.dest_path.read_bytes() == b"old"


def test_overwrite_reencodes(make_cfg, fake_encoder):
    cfg = make_cfg(overwrite=True, quality=80)
    task = _task(cfg)
    task.dest_path.write_bytes(b"old")

    outcome = execute_task(task, cfg, ResolvedTool.MAGICK, encoder=fake_encoder)

    assert outcome.kind == "converted"
    assert outcome.output_written
    assert fake_encoder.calls == [(task.source_path, task.dest_path, 80)]
    assert task.dest_path.read_bytes() == b"heic:png"


def test_dry_run_touches_nothing(make_cfg, fake_encoder):
    cfg = make_cfg(dry_run=True, delete_originals=True, overwrite=True)
    task = _task(cfg)

    outcome = execute_task(task, cfg, ResolvedTool.FFMPEG, encoder=fake_encoder)

    assert outcome.kind == "dry_run"
    assert fake_encoder.calls == []
    assert task.source_path.exists()
    assert not task.dest_path.exists()


def test_backend_failure_keeps_source(make_cfg, messages):
    cfg = make_cfg(delete_originals=True)
    task = _task(cfg)
    enc = FakeEncoder(rc=1, err="encoder exploded")

    outcome = execute_task(task, cfg, ResolvedTool.FFMPEG, encoder=enc)

    assert outcome.kind == "failed"
    assert not outcome.ok
    assert "encoder exploded" in outcome.reason
    assert task.source_path.exists()
    assert any("Failed to convert" in m and "FFmpeg" in m for m in messages)


def test_failure_without_stderr_has_reason(make_cfg):
    cfg = make_cfg()
    outcome = execute_task(_task(cfg), cfg, ResolvedTool.MAGICK, encoder=FakeEncoder(rc=3))
    assert outcome.reason == "exit code 3"


def test_delete_originals_after_success(make_cfg, fake_encoder):
    cfg = make_cfg(delete_originals=True)
    task = _task(cfg)

    outcome = execute_task(task, cfg, ResolvedTool.MAGICK, encoder=fake_encoder)

    assert outcome.kind == "converted"
    assert not task.source_path.exists()
    assert task.dest_path.exists()


def test_delete_failure_is_a_failed_outcome(make_cfg, fake_encoder):
    cfg = make_cfg(delete_originals=True)
    task = _task(cfg)

    with patch.object(Path, "unlink", side_effect=PermissionError("denied")):
        outcome = execute_task(task, cfg, ResolvedTool.MAGICK, encoder=fake_encoder)

    assert outcome.kind == "failed"
    assert outcome.output_written
    assert "deleting the original failed" in outcome.reason
    assert task.dest_path.exists()


def test_silent_mode_reports_nothing_for_skips(make_cfg, fake_encoder, messages):
    cfg = make_cfg(verbose=False)
    task = _task(cfg)
    task.dest_path.write_bytes(b"old")
    execute_task(task, cfg, ResolvedTool.MAGICK, encoder=fake_encoder)
    assert not any("Skipping" in m for m in messages)


def test_source_that_is_the_output_is_never_overwritten_or_deleted(make_cfg, fake_encoder, messages):
    cfg = make_cfg(overwrite=True, delete_originals=True, extensions=("heic",))
    src = cfg.input_dir / "a.heic"
    src.write_bytes(b"original")
    task = ConversionTask(src, cfg.output_dir / "a.heic")

    outcome = execute_task(task, cfg, ResolvedTool.MAGICK, encoder=fake_encoder)

    assert outcome.kind == "skipped"
    assert outcome.reason == "source is the output"
    assert fake_encoder.calls == []
    assert src.read_bytes() == b"original"
    assert any("source is the output file" in m for m in messages)


def test_same_file_check_follows_links(make_cfg, fake_encoder):
    cfg = make_cfg(overwrite=True, delete_originals=True)
    real = cfg.input_dir / "a.heic"
    real.write_bytes(b"original")
    link = cfg.input_dir / "link.png"
    link.symlink_to(real)

    outcome = execute_task(ConversionTask(link, real), cfg, ResolvedTool.MAGICK, encoder=fake_encoder)

    assert outcome.kind == "skipped"
    assert real.read_bytes() == b"original"

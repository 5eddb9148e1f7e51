from dataclasses import replace
from pathlib import Path

import pytest
from loguru import logger

from img2heic.config import DEFAULT_EXTENSIONS, RunConfig, Tool


@pytest.fixture(autouse=True)
def clean_logger():
    # Each test starts without sinks; tests that inspect output add their own
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def messages():
    """Collect formatted log messages (DEBUG and above) into a list."""
    collected = []
    logger.add(lambda m: collected.append(m.record["message"]), level="DEBUG")
    return collected


class FakeEncoder:
    """Stands in for a backend: records calls and writes a marker output."""

    def __init__(self, rc: int = 0, err: str = ""):
        self.rc = rc
        self.err = err
        self.calls = []

    def __call__(self, src, dest, *, quality, verbose=True):
        self.calls.append((Path(src), Path(dest), quality))
        if self.rc == 0:
            Path(dest).write_bytes(b"heic:" + Path(src).read_bytes())
        return self.rc, self.err


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def make_cfg(tmp_path):
    in_dir = tmp_path / "in"
    in_dir.mkdir()
    base = RunConfig(
        quality=65,
        lossless=False,
        delete_originals=False,
        overwrite=False,
        parallel=False,
        dry_run=False,
        verbose=True,
        tool=Tool.MAGICK,
        extensions=DEFAULT_EXTENSIONS,
        input_dir=in_dir,
        output_dir=in_dir,
    )

    def _make(**kw):
        return replace(base, **kw)

    return _make

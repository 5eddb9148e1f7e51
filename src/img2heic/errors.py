"""Fatal error types. Per-file problems are reported as task outcomes instead."""
from __future__ import annotations


class Img2HeicError(Exception):
    """Base class for errors that abort the run before any conversion."""


class ConfigError(Img2HeicError):
    pass


class InputDirError(Img2HeicError):
    pass


class BackendUnavailableError(Img2HeicError):
    pass

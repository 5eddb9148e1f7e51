"""img2heic (batch image to HEIC converter)

Scans a directory for images and converts each one to HEIC through an external
encoder (ImageMagick or FFmpeg/libx265).
"""

__all__ = [
    "__version__",
]

# Keep in sync with pyproject.toml
__version__ = "0.1.0"

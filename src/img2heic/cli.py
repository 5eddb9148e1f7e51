from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .config import (
    FORMAT_FLAGS,
    Img2HeicSettings,
    cli_overrides_from_args,
    parse_ext_list,
    resolve_run_config,
)
from .errors import ConfigError
from .logging import bind_run, console_level, setup_console, setup_json
from .runner import EXIT_FATAL, EXIT_OK, cmd_convert_dir
from .tools import probe_ffmpeg, probe_magick


EXAMPLES = """\
Examples:
  img2heic --ext png,jpg photos/
  img2heic --png photos/
"""


class _Parser(argparse.ArgumentParser):
    """Print the full help on bad usage and exit with code 1."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_help(sys.stderr)
        self.exit(EXIT_FATAL, f"Error: {message}\n")


def _ext_list(value: str) -> List[str]:
    try:
        return parse_ext_list(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    p = _Parser(
        prog="img2heic",
        usage="%(prog)s [options] [input_dir] [output_dir]",
        description="Convert images to HEIC format using FFmpeg or ImageMagick.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("paths", nargs="*", metavar="DIR",
                   help="input_dir (default: .) and optional output_dir (default: input_dir)")

    # Unset flags stay None so config file / env values are not overridden
    p.add_argument("-l", "--lossless", dest="lossless", action="store_const", const=True, default=None,
                   help="Use lossless compression (sets quality to 100)")
    p.add_argument("-q", "--quality", dest="quality", metavar="NUM", default=None,
                   help="Set compression quality (1-100, default: 65)")
    p.add_argument("-d", "--delete", dest="delete_originals", action="store_const", const=True, default=None,
                   help="Delete original files after successful conversion")
    p.add_argument("-o", "--overwrite", dest="overwrite", action="store_const", const=True, default=None,
                   help="Overwrite existing HEIC files")
    p.add_argument("-p", "--no-parallel", dest="parallel", action="store_const", const=False, default=None,
                   help="Disable parallel processing")
    p.add_argument("-n", "--dry-run", dest="dry_run", action="store_const", const=True, default=None,
                   help="Don't actually convert files, just show what would be done")
    p.add_argument("-s", "--silent", dest="verbose", action="store_const", const=False, default=None,
                   help="Suppress output except errors")
    p.add_argument("-t", "--tool", dest="tool", metavar="TOOL", default=None,
                   help="Specify conversion tool: 'magick', 'ffmpeg', or 'auto' (default: magick)")
    p.add_argument("-e", "--ext", dest="extensions", metavar="LIST", type=_ext_list, default=None,
                   help="Comma-separated list of extensions to convert (e.g. png,jpg)")
    # Each format flag replaces the extension set; the last one given wins
    for name, exts in FORMAT_FLAGS.items():
        p.add_argument(f"--{name}", dest="extensions", action="store_const", const=list(exts),
                       help=f"Only convert {name.upper()} files")

    # Settings/logging options (defaults resolved via Img2HeicSettings)
    p.add_argument("-w", "--workers", dest="workers", type=int, default=None,
                   help="Parallel workers (default: CPU cores)")
    p.add_argument("--fail-on-error", dest="fail_on_error", action="store_const", const=True, default=None,
                   help="Exit with code 2 if any file failed to convert")
    p.add_argument("--config", dest="config_path", default=None,
                   help="Path to TOML config (default: ~/.config/img2heic/config.toml)")
    p.add_argument("--write-config", action="store_true",
                   help="Write current effective settings to the config file and exit")
    p.add_argument("--log-level", dest="log_level", default=None,
                   help="Console log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--log-json", dest="log_json", default=None,
                   help="Path to write JSON lines log (structured events)")
    p.add_argument("--preflight", action="store_true",
                   help="Check ImageMagick and FFmpeg availability and exit")
    return p


def cmd_preflight() -> int:
    st_m = probe_magick()
    if st_m.available:
        logger.info(f"magick: {st_m.magick_path}")
        logger.info(f"version: {st_m.magick_version}")
        logger.info(f"HEIC support (magick): {'YES' if st_m.has_heic else 'NO'}")
    else:
        logger.warning(f"magick: NOT FOUND ({st_m.error})")

    st_f = probe_ffmpeg()
    if st_f.available:
        logger.info(f"ffmpeg: {st_f.ffmpeg_path}")
        logger.info(f"version: {st_f.ffmpeg_version}")
        logger.info(f"libx265 (ffmpeg): {'YES' if st_f.has_libx265 else 'NO'}")
    else:
        logger.warning(f"ffmpeg: NOT FOUND ({st_f.error})")

    ok = st_m.available or st_f.available
    if not ok:
        logger.error("Neither FFmpeg nor ImageMagick found. Please install one of them.")
    return EXIT_OK if ok else EXIT_FATAL


def main(argv: Optional[List[str]] = None) -> int:
    p = build_parser()
    args = p.parse_intermixed_args(argv)
    if len(args.paths) > 2:
        p.error("Too many arguments")

    # Errors raised while loading settings still need a sink
    setup_console("INFO")

    config_path = Path(args.config_path).expanduser() if args.config_path else None
    try:
        # Load settings: defaults + TOML + env + CLI overrides
        cfg = Img2HeicSettings.load(config_path=config_path, overrides=cli_overrides_from_args(args))
        if args.write_config:
            written = cfg.write(config_path)
            print(f"Config written to: {written}")
            return EXIT_OK
        run_cfg = resolve_run_config(cfg, args.paths)
    except ConfigError as e:
        logger.error(f"Error: {e}")
        return EXIT_FATAL

    setup_console(console_level(cfg.verbose, cfg.log_level))
    if cfg.log_json:
        setup_json(cfg.log_json)
    bind_run()

    if args.preflight:
        return cmd_preflight()

    exit_code, _ = cmd_convert_dir(run_cfg, log_json_path=cfg.log_json)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

"""Command line driver: `treepack SOURCE TARGET [MODE]`."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import zipfile
from logging import getLogger

import sentry_sdk

from treepack import __version__
from treepack.archive.codecs import CompressionMethod, StreamCodec
from treepack.archive.extract import extract_archive
from treepack.archive.models import ArchiveStats, EntryKind
from treepack.archive.settings import UNSAFE_PATH_POLICIES
from treepack.archive.stream import compress_stream, decompress_stream
from treepack.archive.zip_create import archive_tree
from treepack.errors import TreepackError

logger = getLogger(__name__)

MODES = ("compress", "decompress")


def build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="treepack",
        description=(
            "Compress a directory into a zip container or a single file into a "
            "compressed stream, and reverse either."
        ),
    )
    ap.add_argument("source", help="directory or file to read")
    ap.add_argument("target", help="file or directory to write")
    ap.add_argument("mode", nargs="?", choices=MODES, default="compress")
    ap.add_argument(
        "--method",
        choices=[m.value for m in CompressionMethod],
        default=None,
        help="per-entry method for directory archives (default: $TREEPACK_METHOD or deflate)",
    )
    ap.add_argument(
        "--codec",
        choices=[c.value for c in StreamCodec],
        default=None,
        help="stream codec for single files (default: $TREEPACK_STREAM_CODEC or gzip; "
        "detected when decompressing)",
    )
    ap.add_argument("--level", type=int, default=None, help="compression level")
    ap.add_argument(
        "--on-unsafe-path",
        choices=UNSAFE_PATH_POLICIES,
        default=None,
        help="abort (default) or skip when an entry would land outside TARGET",
    )
    ap.add_argument("--json", action="store_true", help="print a JSON summary instead of text")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    ap.add_argument("-q", "--quiet", action="store_true", help="only log warnings and errors")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet or args.json:
        level = logging.WARNING
    logging.basicConfig(
        level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s"
    )


def _init_error_reporting() -> None:
    """Report fatal errors to Sentry when a DSN is configured."""
    dsn = os.environ.get("TREEPACK_SENTRY_DSN")
    if dsn:
        sentry_sdk.init(dsn=dsn, release=f"treepack@{__version__}")


def run_compress(args: argparse.Namespace) -> ArchiveStats:
    if os.path.isdir(args.source):
        logger.info("treepack: archiving directory tree (source=%s)", args.source)
        return archive_tree(args.source, args.target, method=args.method, level=args.level)
    logger.info("treepack: compressing single file as a stream (source=%s)", args.source)
    return compress_stream(args.source, args.target, codec=args.codec, level=args.level)


def run_decompress(args: argparse.Namespace) -> ArchiveStats:
    # Each format is reversed by its own operation; pick by content.
    if zipfile.is_zipfile(args.source):
        logger.info("treepack: extracting zip container (source=%s)", args.source)
        return extract_archive(args.source, args.target, on_unsafe_path=args.on_unsafe_path)
    logger.info("treepack: decompressing single stream (source=%s)", args.source)
    return decompress_stream(args.source, args.target, codec=args.codec)


def _print_report(stats: ArchiveStats, mode: str) -> None:
    if mode == "decompress":
        for report in stats.entries:
            if report.comment:
                print(f"File {report.index} comment: {report.comment}")
            if report.kind == EntryKind.DIRECTORY:
                print(f'File {report.index} extracted to "{report.target}"')
            else:
                print(
                    f'File {report.index} extracted to "{report.target}" ({report.size} bytes)'
                )
    if stats.skipped_count:
        print(
            f"Skipped {stats.skipped_count} entries "
            f"(symlinks={stats.skipped_symlinks_count} "
            f"unsafe_paths={stats.skipped_unsafe_paths_count} "
            f"unreadable={stats.skipped_unreadable_count} "
            f"special={stats.skipped_special_count})"
        )
    print(f"Source len: {stats.source_size}")
    print(f"Target len: {stats.target_size}")
    print(f"Elapsed time: {stats.elapsed:.3f}s")


def main(argv: list[str] | None = None) -> int:
    args = build_argparser().parse_args(argv)
    _configure_logging(args)
    _init_error_reporting()

    if not args.json:
        print("Compressing..." if args.mode == "compress" else "Decompressing...")
    try:
        if args.mode == "compress":
            stats = run_compress(args)
        else:
            stats = run_decompress(args)
    except TreepackError as exc:
        sentry_sdk.capture_exception(exc)
        logger.error("treepack: failed (mode=%s source=%s)", args.mode, args.source)
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(stats.as_payload(), sort_keys=True))
    else:
        _print_report(stats, args.mode)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Command line entry point: stamp a folder of images and write a ZIP
"""

import argparse
import locale
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from . import create_session
from .batch import BatchProgress
from .config import load_config
from .errors import ErrorKind, StamperError, create_error_recovery_suggestions
from .export import archive_name, write_archive
from .preview import build_contact_sheet

IMAGE_SUFFIXES = {'.jpg', '.jpeg', '.png', '.webp', '.bmp', '.gif', '.tif', '.tiff'}


def expand_inputs(paths: List[str]) -> List[Path]:
    """Files as given; directories contribute their image files"""
    files = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)
        else:
            files.append(path)
    return files


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='stamper', description='Stamp sequential episode labels on images')
    sub = parser.add_subparsers(dest='command', required=True)

    render = sub.add_parser('render', help='Render all images and write a ZIP')
    render.add_argument('inputs', nargs='+', help='Image files or folders')
    render.add_argument('--config', help='Settings YAML (default: config/settings.yaml)')
    render.add_argument('--out', help='Output ZIP path (default: stamped_<date>.zip)')
    render.add_argument('--prefix', help='Label prefix, e.g. "EP "')
    render.add_argument('--start', type=int, help='First sequence number')
    render.add_argument('--digits', type=int, help='Zero padding width (1-6)')
    render.add_argument('--format', choices=['jpeg', 'png'], help='Output format')
    render.add_argument('--quality', type=float, help='JPEG quality (0.1-1)')
    render.add_argument('--workers', type=int, help='Parallel render threads')
    render.add_argument('--preview', help='Also write a contact sheet PNG here')
    return parser


def _overrides(args) -> dict:
    mapping = {
        'prefix': args.prefix,
        'start_number': args.start,
        'digits': args.digits,
        'output_format': args.format,
        'encode_quality': args.quality,
        'workers': args.workers,
    }
    return {k: v for k, v in mapping.items() if v is not None}


def cmd_render(args) -> int:
    app_config = load_config(args.config)
    overrides = _overrides(args)
    if overrides:
        app_config = app_config.model_copy(update={'run': app_config.run.with_overrides(**overrides)})

    files = expand_inputs(args.inputs)
    if not files:
        logger.error("No input images found")
        return 2

    def on_progress(progress: BatchProgress):
        logger.info(f"Rendering... {progress.done}/{progress.total}")

    with create_session(app_config) as session:
        session.load(files)
        cells = session.render(on_progress)
        entries, failed = session.export_entries()

        for cell in failed:
            logger.error(f"{cell.identifier} [{cell.spec_key}] {cell.label}: {cell.error_text} ({cell.error.message})")

        if args.preview:
            sheet = build_contact_sheet(cells, session.config)
            if sheet is not None:
                Path(args.preview).parent.mkdir(parents=True, exist_ok=True)
                sheet.save(args.preview, 'PNG')
                logger.info(f"Wrote preview {args.preview}")

        if not entries:
            context = {
                'decode_failures': sum(1 for c in failed if c.error.kind == ErrorKind.DECODE),
                'encode_failures': sum(1 for c in failed if c.error.kind == ErrorKind.ENCODE),
            }
            for hint in create_error_recovery_suggestions(RuntimeError("no output"), context):
                logger.info(f"Hint: {hint}")
            logger.error("Nothing was rendered successfully")
            return 1

        out = write_archive(entries, Path(args.out or archive_name()))
        logger.info(f"Done: {len(entries)} files -> {out}, {len(failed)} failed")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    try:
        locale.setlocale(locale.LC_COLLATE, '')
    except locale.Error:
        logger.debug("Could not apply the user's collation locale, using codepoint order")

    args = build_parser().parse_args(argv)
    try:
        if args.command == 'render':
            return cmd_render(args)
    except StamperError as e:
        logger.error(e.message)
        for hint in e.suggestions:
            logger.info(f"Hint: {hint}")
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main())

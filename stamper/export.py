"""
Export of stamped frames.

Collects the successful render cells as named byte buffers (in run
order) and packs them into a ZIP archive.
"""

import datetime as _dt
import io
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .batch import RenderCell
from .config import RunConfig
from .naming import file_name


ExportEntry = Tuple[str, bytes]


def _dedupe(name: str, seen: Dict[str, int]) -> str:
    if name not in seen:
        seen[name] = 1
        return name
    seen[name] += 1
    stem, dot, ext = name.rpartition(".")
    candidate = f"{stem}_{seen[name]}{dot}{ext}" if dot else f"{name}_{seen[name]}"
    while candidate in seen:
        seen[name] += 1
        candidate = f"{stem}_{seen[name]}{dot}{ext}" if dot else f"{name}_{seen[name]}"
    seen[candidate] = 1
    logger.warning(f"Duplicate export name {name}, using {candidate}")
    return candidate


def collect_export_entries(cells: Iterable[RenderCell],
                           config: RunConfig) -> Tuple[List[ExportEntry], List[RenderCell]]:
    """
    Split cells into export entries and failures.

    Returns (entries, failed_cells); entries keep run order and unique names.
    """
    rules = config.naming_rules()
    entries: List[ExportEntry] = []
    failed: List[RenderCell] = []
    seen: Dict[str, int] = {}

    for cell in cells:
        if not cell.ok:
            failed.append(cell)
            continue
        name = _dedupe(file_name(cell, rules, config.extension), seen)
        entries.append((name, cell.encoded))

    logger.info(f"Collected {len(entries)} export entries ({len(failed)} failed cells skipped)")
    return entries, failed


def archive_name(date: Optional[_dt.date] = None) -> str:
    """stamped_YYYY-MM-DD.zip"""
    date = date or _dt.date.today()
    return f"stamped_{date.isoformat()}.zip"


def build_archive(entries: Iterable[ExportEntry]) -> bytes:
    """Pack entries into an in-memory ZIP"""
    buffer = io.BytesIO()
    count = 0
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            zf.writestr(name, data)
            count += 1
    logger.debug(f"Built archive with {count} files ({buffer.tell()} bytes)")
    return buffer.getvalue()


def write_archive(entries: Iterable[ExportEntry], output_path: Path) -> Path:
    """Write entries to a .zip file, appending the suffix if missing"""
    output_path = Path(output_path)
    if output_path.suffix != ".zip":
        output_path = output_path.with_suffix(".zip")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    output_path.write_bytes(build_archive(entries))
    logger.info(f"Wrote archive {output_path}")
    return output_path

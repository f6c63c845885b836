"""
Contact sheet preview of a stamping run.
Lays out the stamped frames grouped by output spec, with failed cells
drawn as labeled error placeholders
"""

import io
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageDraw, UnidentifiedImageError
from loguru import logger

from .batch import RenderCell
from .compose import render_error_placeholder
from .config import OutputSpec, RunConfig
from .surface import resolve_font


class ContactSheetGenerator:
    """Generate a contact sheet from render cells"""

    def __init__(self, config: RunConfig, sheet_width: int = 1600, thumb_height: int = 240):
        self.config = config
        self.sheet_width = sheet_width
        self.thumb_height = thumb_height
        self.margin = 16
        self.caption_height = 40
        self.header_height = 36
        self.background = (245, 245, 245)

    def _thumb_size(self, spec: OutputSpec) -> Tuple[int, int]:
        width = max(1, int(round(spec.width * self.thumb_height / spec.height)))
        max_width = self.sheet_width - 2 * self.margin
        if width > max_width:
            return max_width, max(1, int(round(spec.height * max_width / spec.width)))
        return width, self.thumb_height

    def _thumbnail(self, cell: RenderCell, spec: OutputSpec) -> Image.Image:
        size = self._thumb_size(spec)
        if cell.ok:
            try:
                with Image.open(io.BytesIO(cell.encoded)) as stamped:
                    return stamped.convert('RGB').resize(size, Image.Resampling.LANCZOS)
            except (UnidentifiedImageError, OSError) as e:
                logger.warning(f"Could not read back {cell.identifier} [{cell.spec_key}]: {e}")
                return render_error_placeholder(spec, cell.label or cell.identifier, str(e), size)
        return render_error_placeholder(spec, cell.label or cell.identifier, cell.error_text, size)

    def _layout(self, cells_by_spec: Dict[str, List[RenderCell]]) -> List[Tuple[str, int, List[Tuple[int, int]]]]:
        """Row-wrap each spec group; returns (spec key, header y, thumb positions)"""
        plan = []
        y = self.margin
        for spec in self.config.output_specs:
            cells = cells_by_spec.get(spec.key, [])
            if not cells:
                continue
            tw, th = self._thumb_size(spec)
            header_y = y
            y += self.header_height
            x = self.margin
            positions = []
            for _ in cells:
                if x + tw > self.sheet_width - self.margin and x > self.margin:
                    x = self.margin
                    y += th + self.caption_height + self.margin
                positions.append((x, y))
                x += tw + self.margin
            y += th + self.caption_height + self.margin
            plan.append((spec.key, header_y, positions))
        return plan

    def generate(self, cells: List[RenderCell]) -> Image.Image:
        specs = {spec.key: spec for spec in self.config.output_specs}
        cells_by_spec: Dict[str, List[RenderCell]] = {}
        for cell in cells:
            if cell.spec_key in specs:
                cells_by_spec.setdefault(cell.spec_key, []).append(cell)

        plan = self._layout(cells_by_spec)
        height = self.margin
        for key, _, positions in plan:
            _, th = self._thumb_size(specs[key])
            height = max(height, positions[-1][1] + th + self.caption_height + self.margin)

        sheet = Image.new('RGB', (self.sheet_width, height), self.background)
        draw = ImageDraw.Draw(sheet)
        header_font = resolve_font("DejaVu Sans", True, 20)
        caption_font = resolve_font("DejaVu Sans", False, 13)

        for key, header_y, positions in plan:
            spec = specs[key]
            draw.text((self.margin, header_y + 6), spec.size_label, font=header_font, fill=(33, 33, 33))
            for cell, (x, y) in zip(cells_by_spec[key], positions):
                thumb = self._thumbnail(cell, spec)
                sheet.paste(thumb, (x, y))
                draw.text((x, y + thumb.height + 4), cell.identifier, font=caption_font, fill=(33, 33, 33))
                draw.text((x, y + thumb.height + 20), cell.label or "-", font=caption_font,
                          fill=(117, 117, 117) if cell.ok else (229, 57, 53))

        logger.info(f"Contact sheet: {len(cells)} cells, {self.sheet_width}x{height}")
        return sheet


def build_contact_sheet(cells: List[RenderCell], config: RunConfig,
                        sheet_width: int = 1600) -> Optional[Image.Image]:
    """Contact sheet image, or None when there is nothing to show"""
    if not cells:
        return None
    return ContactSheetGenerator(config, sheet_width=sheet_width).generate(cells)

"""
Raster surface for frame composition.

This module handles:
- Allocating an RGBA drawing surface of an exact size
- Filling (optionally translucent) rectangles
- Drawing a source image scaled into a target rectangle
- Measuring and drawing text with an optional blurred drop shadow
- Encoding the finished surface to PNG/JPEG bytes
- Resolving font family lists to Pillow fonts
"""

import io
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont
from loguru import logger

from .errors import EncodeError, SurfaceError


RGBA = Tuple[int, int, int, int]

# CSS generic families have no file behind them
GENERIC_FAMILIES = {
    'system-ui', '-apple-system', 'blinkmacsystemfont', 'sans-serif', 'serif',
    'monospace', 'cursive', 'fantasy', 'ui-sans-serif', 'ui-serif',
}

FALLBACK_FONTS = {
    True: ["DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf"],
    False: ["DejaVuSans.ttf", "Arial.ttf", "arial.ttf"],
}


def hex_to_rgba(hex_color: str, alpha: float = 1.0) -> RGBA:
    """Convert '#rrggbb' plus a 0-1 alpha to an RGBA tuple; malformed colors become black"""
    a = int(round(max(0.0, min(1.0, alpha)) * 255))
    h = (hex_color or "").replace("#", "").strip()
    if len(h) != 6:
        return (0, 0, 0, a)
    try:
        return (int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16), a)
    except ValueError:
        return (0, 0, 0, a)


@dataclass(frozen=True)
class DropShadow:
    """Shadow applied to a single text draw"""
    color: RGBA
    blur: float
    offset_x: float
    offset_y: float


# Font cache keyed by (family list, bold, size, extra paths)
_font_cache: Dict[tuple, ImageFont.ImageFont] = {}


def _family_candidates(family: str, bold: bool) -> List[str]:
    """File names to try for one CSS-style family name"""
    name = family.strip().strip('"\'')
    if not name or name.lower() in GENERIC_FAMILIES:
        return []
    compact = name.replace(" ", "")
    names = []
    if bold:
        for base in (compact, name):
            names.extend([f"{base}-Bold.ttf", f"{base}-Bold.otf", f"{base} Bold.ttf"])
    names.extend([f"{compact}-Regular.ttf", f"{compact}-Regular.otf", f"{compact}.ttf",
                  f"{name}.ttf", f"{compact}.otf"])
    return names


def resolve_font(font_family: str, bold: bool, size: int,
                 font_paths: Sequence[str] = ()) -> ImageFont.ImageFont:
    """
    Resolve a comma separated family list to a Pillow font.

    Explicit font files are tried first, then each named family (bold
    variants before regular when bold is requested), then common system
    fonts, and finally Pillow's built-in scalable default font.
    """
    cache_key = (font_family, bold, size, tuple(font_paths))
    if cache_key in _font_cache:
        return _font_cache[cache_key]

    candidates = list(font_paths)
    for family in font_family.split(","):
        candidates.extend(_family_candidates(family, bold))
    candidates.extend(FALLBACK_FONTS[bool(bold)])

    font = None
    for candidate in candidates:
        try:
            font = ImageFont.truetype(candidate, size)
            logger.debug(f"Resolved font '{font_family}' (bold={bold}, {size}px) -> {candidate}")
            break
        except OSError:
            continue

    if font is None:
        logger.warning(f"No font file found for '{font_family}', using Pillow default font")
        font = ImageFont.load_default(size=size)

    _font_cache[cache_key] = font
    return font


class RasterSurface:
    """
    Exclusive drawing surface for one render cell.

    All drawing happens on an RGBA buffer; translucent layers are
    composited source-over so the result matches straight-alpha canvas
    blending. Use as a context manager to release the buffer.
    """

    def __init__(self, width: int, height: int, fill: RGBA = (0, 0, 0, 255)):
        if width <= 0 or height <= 0:
            raise SurfaceError(width, height, "dimensions must be positive")
        try:
            self.image = Image.new('RGBA', (int(width), int(height)), fill)
        except (ValueError, OSError) as e:
            raise SurfaceError(width, height, str(e)) from e
        self.width = int(width)
        self.height = int(height)
        self._draw = ImageDraw.Draw(self.image)

    def __enter__(self) -> "RasterSurface":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self.image is not None:
            self.image.close()
            self.image = None
            self._draw = None

    def _clip_box(self, x: float, y: float, w: float, h: float) -> Optional[Tuple[int, int, int, int]]:
        left = max(0, int(round(x)))
        top = max(0, int(round(y)))
        right = min(self.width, int(round(x + w)))
        bottom = min(self.height, int(round(y + h)))
        if right <= left or bottom <= top:
            return None
        return left, top, right, bottom

    def fill_rect(self, x: float, y: float, w: float, h: float, color: RGBA):
        """Fill a rectangle, blending when the color is translucent"""
        box = self._clip_box(x, y, w, h)
        if box is None:
            return
        left, top, right, bottom = box
        if color[3] >= 255:
            self._draw.rectangle([left, top, right - 1, bottom - 1], fill=color)
            return
        if color[3] <= 0:
            return
        layer = Image.new('RGBA', (right - left, bottom - top), color)
        self.image.alpha_composite(layer, dest=(left, top))

    def draw_image(self, source: Image.Image, x: int, y: int, w: int, h: int):
        """Draw `source` resized to w x h with its top-left corner at (x, y)"""
        if w <= 0 or h <= 0:
            return
        if source.mode not in ('RGB', 'RGBA'):
            has_alpha = source.mode in ('LA', 'PA', 'La') or (source.mode == 'P' and 'transparency' in source.info)
            source = source.convert('RGBA' if has_alpha else 'RGB')
        scaled = source.resize((int(w), int(h)), Image.Resampling.LANCZOS)
        if scaled.mode == 'RGBA':
            # Composite through a same-size layer so off-surface parts are clipped
            layer = Image.new('RGBA', self.image.size, (0, 0, 0, 0))
            layer.paste(scaled, (int(x), int(y)))
            self.image.alpha_composite(layer)
        else:
            self.image.paste(scaled, (int(x), int(y)))

    def measure_text(self, text: str, font: ImageFont.ImageFont) -> float:
        """Advance width of the text in pixels"""
        return self._draw.textlength(text, font=font)

    def _text(self, draw: ImageDraw.ImageDraw, xy: Tuple[float, float], text: str,
              font: ImageFont.ImageFont, fill: RGBA):
        # 'la' = left/ascender, the top-baseline equivalent
        if isinstance(font, ImageFont.FreeTypeFont):
            draw.text(xy, text, font=font, fill=fill, anchor='la')
        else:
            draw.text(xy, text, font=font, fill=fill)

    def draw_text(self, x: float, y: float, text: str, font: ImageFont.ImageFont,
                  color: RGBA, shadow: Optional[DropShadow] = None):
        """Draw text with its top-left at (x, y); the shadow applies to this call only"""
        if not text:
            return

        if shadow is not None and shadow.color[3] > 0:
            layer = Image.new('RGBA', self.image.size, shadow.color[:3] + (0,))
            self._text(ImageDraw.Draw(layer), (x + shadow.offset_x, y + shadow.offset_y),
                       text, font, shadow.color)
            if shadow.blur > 0:
                # Canvas blur is twice the gaussian standard deviation
                layer = layer.filter(ImageFilter.GaussianBlur(radius=shadow.blur / 2.0))
            self.image.alpha_composite(layer)

        if color[3] >= 255:
            self._text(self._draw, (x, y), text, font, color)
        else:
            layer = Image.new('RGBA', self.image.size, color[:3] + (0,))
            self._text(ImageDraw.Draw(layer), (x, y), text, font, color)
            self.image.alpha_composite(layer)

    def encode(self, output_format: str = 'jpeg', quality: float = 0.92) -> bytes:
        """Encode the surface; quality (0.1-1) only affects JPEG"""
        fmt = output_format.lower()
        buffer = io.BytesIO()
        try:
            if fmt in ('jpeg', 'jpg'):
                q = int(round(max(0.1, min(1.0, quality)) * 100))
                self.image.convert('RGB').save(buffer, 'JPEG', quality=q, optimize=True)
            elif fmt == 'png':
                self.image.convert('RGB').save(buffer, 'PNG')
            else:
                raise EncodeError(output_format, "unsupported output format")
        except (OSError, ValueError, KeyError) as e:
            raise EncodeError(output_format, str(e)) from e
        return buffer.getvalue()

    def snapshot(self) -> Image.Image:
        """RGB copy of the current surface"""
        return self.image.convert('RGB')

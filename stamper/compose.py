"""
Frame composition module for the episode stamper.

This module handles:
- Letterbox fitting a source image into an output canvas
- Drawing the label background box, drop shadow and label text
- Encoding the composed frame
- Drawing labeled placeholders for cells that failed
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageDraw
from loguru import logger

from .config import OutputSpec, RunConfig, StampStyle
from .surface import DropShadow, RasterSurface, hex_to_rgba, resolve_font


LETTERBOX_FILL = (0, 0, 0, 255)


def clamp(n: float, low: float, high: float) -> float:
    return min(high, max(low, n))


@dataclass(frozen=True)
class FitBox:
    """Where a scaled source lands on the output canvas"""
    scale: float
    x: float
    y: float
    width: float
    height: float

    def pixel_box(self) -> Tuple[int, int, int, int]:
        """Integer (x, y, w, h) that stays inside the canvas"""
        w = max(1, int(round(self.width)))
        h = max(1, int(round(self.height)))
        return int(round(self.x)), int(round(self.y)), w, h


def fit_rect(source_w: int, source_h: int, canvas_w: int, canvas_h: int) -> FitBox:
    """Uniform scale-to-fit, centered; never crops"""
    scale = min(canvas_w / source_w, canvas_h / source_h)
    draw_w = source_w * scale
    draw_h = source_h * scale
    return FitBox(
        scale=scale,
        x=(canvas_w - draw_w) / 2,
        y=(canvas_h - draw_h) / 2,
        width=draw_w,
        height=draw_h,
    )


@dataclass(frozen=True)
class StampPlacement:
    """Label geometry for one cell"""
    anchor_x: int
    anchor_y: int
    text_x: int
    text_y: int
    text_width: float
    text_height: float
    box_width: float
    box_height: float


def plan_stamp(spec: OutputSpec, style: StampStyle, text_width: float,
               text_height_factor: float = 1.1) -> StampPlacement:
    """Clamp the anchor into the canvas and size the background box"""
    text_height = spec.font_size * text_height_factor
    x = int(clamp(spec.offset_x, 0, spec.width - 1))
    y = int(clamp(spec.offset_y, 0, spec.height - 1))
    return StampPlacement(
        anchor_x=x,
        anchor_y=y,
        text_x=x + style.padding,
        text_y=y + style.padding,
        text_width=text_width,
        text_height=text_height,
        box_width=text_width + style.padding * 2,
        box_height=text_height + style.padding * 2,
    )


class FrameComposer:
    """Compose stamped frames for every output spec of one run configuration"""

    def __init__(self, config: RunConfig):
        self.config = config
        self.style = config.style

    def font_for(self, spec: OutputSpec):
        return resolve_font(self.style.font_family, self.style.bold, spec.font_size,
                            self.config.font_paths)

    def shadow_for(self, spec: OutputSpec) -> Optional[DropShadow]:
        """Shadow for this spec, or None when disabled"""
        if not self.style.use_shadow:
            return None
        blur, offset = self.config.shadow.scaled_for(spec.width, spec.height)
        return DropShadow(
            color=(0, 0, 0, int(round(self.style.shadow_alpha * 255))),
            blur=blur,
            offset_x=offset,
            offset_y=offset,
        )

    def compose_surface(self, raster: Image.Image, spec: OutputSpec, label: str) -> RasterSurface:
        """
        Draw one frame and return its surface; the caller owns and closes it.

        Raises SurfaceError if the canvas cannot be allocated.
        """
        surface = RasterSurface(spec.width, spec.height, fill=LETTERBOX_FILL)
        try:
            fit = fit_rect(raster.width, raster.height, spec.width, spec.height)
            surface.draw_image(raster, *fit.pixel_box())

            font = self.font_for(spec)
            placement = plan_stamp(spec, self.style, surface.measure_text(label, font),
                                   self.config.text_height_factor)

            if self.style.use_background:
                surface.fill_rect(
                    placement.anchor_x, placement.anchor_y,
                    placement.box_width, placement.box_height,
                    hex_to_rgba(self.style.background_color, self.style.background_alpha),
                )

            surface.draw_text(
                placement.text_x, placement.text_y, label, font,
                hex_to_rgba(self.style.text_color, 1.0),
                shadow=self.shadow_for(spec),
            )
        except BaseException:
            surface.close()
            raise

        logger.debug(f"Composed '{label}' on {spec.key} {spec.width}x{spec.height} "
                     f"(scale={fit.scale:.4f}, box={fit.pixel_box()})")
        return surface

    def compose(self, raster: Image.Image, spec: OutputSpec, label: str) -> bytes:
        """Compose and encode one frame; raises SurfaceError or EncodeError"""
        with self.compose_surface(raster, spec, label) as surface:
            return surface.encode(self.config.output_format, self.config.encode_quality)


def render_error_placeholder(spec: OutputSpec, title: str, message: str,
                             size: Optional[Tuple[int, int]] = None) -> Image.Image:
    """Black frame with the cell label and error message in red"""
    width, height = size or (spec.width, spec.height)
    image = Image.new('RGB', (width, height), (0, 0, 0))
    draw = ImageDraw.Draw(image)
    font_size = max(10, min(width, height) // 16)
    font = resolve_font("DejaVu Sans", False, font_size)

    margin = max(4, font_size // 2)
    draw.text((margin, margin), title, font=font, fill=(200, 200, 200))
    draw.text((margin, margin + int(font_size * 1.5)), message, font=font, fill=(229, 57, 53))
    return image

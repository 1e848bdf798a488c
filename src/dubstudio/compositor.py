"""
Caption overlay compositing with Pillow.

Each call repaints the whole frame target, so compositing the same frame twice
gives the same pixels and nothing carries over between frames.
"""

import logging
import math
from dataclasses import dataclass
from functools import lru_cache

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from .models import Caption

logger = logging.getLogger("dubstudio")

# Panel padding, radius and shadow are specified at this output height and
# scaled linearly for other resolutions.
REFERENCE_HEIGHT = 720

BOLD_FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "LiberationSans-Bold.ttf",
    "Arial Bold.ttf",
    "arialbd.ttf",
    "Helvetica-Bold.ttf",
)


@dataclass(frozen=True)
class CaptionStyle:
    font_path: str | None = None
    font_divisor: int = 18  # font size = frame height // font_divisor
    padding_x: float = 30.0  # each side
    padding_y: float = 30.0  # total
    radius: float = 15.0
    panel_top: float = 2.5  # panel top sits panel_top * font size above the bottom edge
    baseline: float = 1.6  # text baseline sits baseline * font size above the bottom edge
    panel_rgba: tuple[int, int, int, int] = (2, 6, 23, 217)
    text_rgba: tuple[int, int, int, int] = (255, 255, 255, 255)
    shadow_rgba: tuple[int, int, int, int] = (0, 0, 0, 128)
    shadow_blur: float = 5.0


DEFAULT_STYLE = CaptionStyle()


@lru_cache(maxsize=32)
def load_caption_font(size: int, font_path: str | None = None) -> ImageFont.ImageFont:
    """Resolve a bold TrueType font, falling back to Pillow's bundled default."""
    candidates = ((font_path,) if font_path else ()) + BOLD_FONT_CANDIDATES
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    logger.warning("No bold TrueType font found, using Pillow's default font")
    return ImageFont.load_default(size=size)


def new_frame_target(width: int, height: int) -> Image.Image:
    """Allocate the RGBA raster frames are composited into."""
    return Image.new("RGBA", (width, height), (0, 0, 0, 255))


def _clip_box(box: tuple[float, float, float, float], width: int, height: int):
    left = max(0, math.floor(box[0]))
    top = max(0, math.floor(box[1]))
    right = min(width, math.ceil(box[2]))
    bottom = min(height, math.ceil(box[3]))
    if right <= left or bottom <= top:
        return None
    return left, top, right, bottom


def draw_caption(
    frame_target: Image.Image,
    text: str,
    frame_width: int,
    frame_height: int,
    style: CaptionStyle = DEFAULT_STYLE,
) -> None:
    """Draw the caption bubble (panel, shadow, text) onto the frame target."""
    scale = frame_height / REFERENCE_HEIGHT
    font_size = max(1, frame_height // style.font_divisor)
    font = load_caption_font(font_size, style.font_path)
    # single line; textlength() and the "ms" anchor reject multiline text
    text = " ".join(text.split())

    measure = ImageDraw.Draw(frame_target)
    text_width = measure.textlength(text, font=font) if text else 0.0

    pad_x = style.padding_x * scale
    cx = frame_width / 2
    rect = (
        cx - text_width / 2 - pad_x,
        frame_height - font_size * style.panel_top,
        cx + text_width / 2 + pad_x,
        frame_height - font_size * style.panel_top + font_size + style.padding_y * scale,
    )
    baseline_y = frame_height - font_size * style.baseline
    blur = style.shadow_blur * scale
    margin = math.ceil(blur * 3)

    region = _clip_box(
        (rect[0] - margin, rect[1] - margin, rect[2] + margin, rect[3] + margin),
        frame_width,
        frame_height,
    )
    if region is None:
        return
    ox, oy = region[0], region[1]
    size = (region[2] - region[0], region[3] - region[1])
    local_rect = [round(rect[0] - ox), round(rect[1] - oy), round(rect[2] - ox), round(rect[3] - oy)]
    anchor_xy = (cx - ox, baseline_y - oy)

    panel = Image.new("RGBA", size, (0, 0, 0, 0))
    ImageDraw.Draw(panel).rounded_rectangle(
        local_rect, radius=max(1, round(style.radius * scale)), fill=style.panel_rgba
    )
    frame_target.alpha_composite(panel, dest=(ox, oy))
    if not text:
        return

    shadow = Image.new("RGBA", size, (0, 0, 0, 0))
    ImageDraw.Draw(shadow).text(anchor_xy, text, font=font, fill=style.shadow_rgba, anchor="ms")
    frame_target.alpha_composite(shadow.filter(ImageFilter.GaussianBlur(blur)), dest=(ox, oy))

    glyphs = Image.new("RGBA", size, (0, 0, 0, 0))
    ImageDraw.Draw(glyphs).text(anchor_xy, text, font=font, fill=style.text_rgba, anchor="ms")
    frame_target.alpha_composite(glyphs, dest=(ox, oy))


def composite(
    frame_target: Image.Image,
    video_frame: Image.Image,
    active_caption: Caption | None,
    frame_width: int,
    frame_height: int,
    style: CaptionStyle | None = None,
) -> Image.Image:
    """Paint ``video_frame`` scaled to the target size, then the caption bubble if any."""
    if frame_target.size != (frame_width, frame_height) or frame_target.mode != "RGBA":
        raise ValueError(
            f"Frame target must be RGBA {frame_width}x{frame_height}, "
            f"got {frame_target.mode} {frame_target.size[0]}x{frame_target.size[1]}"
        )
    frame = video_frame
    if frame.size != (frame_width, frame_height):
        frame = frame.resize((frame_width, frame_height), Image.BILINEAR)
    frame_target.paste(frame.convert("RGBA"), (0, 0))

    if active_caption is not None:
        draw_caption(frame_target, active_caption.text, frame_width, frame_height, style or DEFAULT_STYLE)
    return frame_target

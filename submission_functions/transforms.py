import io
import logging
from typing import Iterable, Optional

from PIL import Image, ImageDraw, ImageEnhance, ImageFilter, ImageFont, ImageOps, UnidentifiedImageError

from submission_functions.exceptions import UnsupportedFormatError

logger = logging.getLogger(__name__)

COLOR_RESTORE = 'color_restore'
DEHAZE = 'dehaze'
STABILIZE = 'stabilize'
SUPERRES = 'superres'

# Effects always run in this order, whatever order the caller sent.
MODEL_ORDER = (COLOR_RESTORE, DEHAZE, STABILIZE, SUPERRES)

SATURATION = 1.12
LINEAR_GAIN = 1.06
LINEAR_OFFSET = -4
DEHAZE_SHARPEN = ImageFilter.UnsharpMask(radius=1.5, percent=150, threshold=2)
STABILIZE_SHARPEN = ImageFilter.UnsharpMask(radius=0.6, percent=80, threshold=2)
SUPERRES_FACTOR = 1.5

WATERMARK_OPACITY = 0.35
WATERMARK_MARGIN = 16

OUTPUT_FORMAT = 'JPEG'
OUTPUT_CONTENT_TYPE = 'image/jpeg'
OUTPUT_QUALITY = 92
FALLBACK_CONTENT_TYPE = 'application/octet-stream'

DEFAULT_WATERMARK_LABEL = 'aqua.ai • preview'


def load_image(data: bytes) -> Image.Image:
    """Decode upload bytes, raising UnsupportedFormatError for anything Pillow can't read"""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise UnsupportedFormatError(f"Invalid image data: {e}") from e
    return image


def detected_content_type(image: Image.Image) -> str:
    """MIME type of the decoded format, e.g. ``image/png``"""
    return Image.MIME.get(image.format or '', FALLBACK_CONTENT_TYPE)


def encode_jpeg(image: Image.Image) -> bytes:
    if image.mode != 'RGB':
        image = image.convert('RGB')
    output = io.BytesIO()
    image.save(output, format=OUTPUT_FORMAT, quality=OUTPUT_QUALITY, optimize=True)
    return output.getvalue()


def _linear_lut(bands: int):
    table = [min(255, max(0, round(LINEAR_GAIN * v + LINEAR_OFFSET))) for v in range(256)]
    return table * bands


def color_restore(image: Image.Image) -> Image.Image:
    image = ImageEnhance.Color(image).enhance(SATURATION)
    return image.point(_linear_lut(len(image.getbands())))


def dehaze(image: Image.Image) -> Image.Image:
    return image.filter(DEHAZE_SHARPEN)


def stabilize(image: Image.Image) -> Image.Image:
    return image.filter(STABILIZE_SHARPEN)


def superres(image: Image.Image) -> Image.Image:
    width, height = image.size
    new_width = round(width * SUPERRES_FACTOR)
    new_height = round(height * new_width / width)
    return image.resize((new_width, new_height), Image.LANCZOS)


EFFECTS = {
    COLOR_RESTORE: color_restore,
    DEHAZE: dehaze,
    STABILIZE: stabilize,
    SUPERRES: superres,
}


def limit_width(image: Image.Image, max_width: Optional[int]) -> Image.Image:
    width, height = image.size
    if not max_width or width <= max_width:
        return image
    new_height = max(1, round(height * max_width / width))
    return image.resize((max_width, new_height), Image.LANCZOS)


def watermark_geometry(width: int):
    """(bar height, font size) for an image of the given width"""
    bar_height = max(round(width * 0.06), 40)
    font_size = max(round(bar_height * 0.5), 16)
    return bar_height, font_size


def apply_watermark(image: Image.Image, label: str = DEFAULT_WATERMARK_LABEL) -> Image.Image:
    width, height = image.size
    bar_height, font_size = watermark_geometry(width)
    top = max(0, height - bar_height)

    overlay = Image.new('RGBA', image.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    draw.rectangle([0, top, width, height], fill=(0, 0, 0, round(255 * WATERMARK_OPACITY)))

    font = ImageFont.load_default(size=font_size)
    left, upper, right, lower = draw.textbbox((0, 0), label, font=font)
    text_x = width - WATERMARK_MARGIN - (right - left)
    text_y = top + (bar_height - (lower - upper)) // 2 - upper
    draw.text((text_x, text_y), label, font=font, fill=(255, 255, 255, 255))

    return Image.alpha_composite(image.convert('RGBA'), overlay).convert('RGB')


class TransformChain:
    """Applies the fixed set of enhancement models to an upload"""

    def __init__(self, watermark_label: str = DEFAULT_WATERMARK_LABEL):
        self.watermark_label = watermark_label

    def apply_chain(self, image: Image.Image, models: Iterable[str],
                    max_width: Optional[int] = None, watermark: bool = False) -> Image.Image:
        requested = set(models or [])
        unknown = requested.difference(MODEL_ORDER)
        if unknown:
            logger.info("Ignoring unknown models: %s", sorted(unknown))

        image = ImageOps.exif_transpose(image)
        if image.mode != 'RGB':
            image = image.convert('RGB')
        image = limit_width(image, max_width)

        for model in MODEL_ORDER:
            if model in requested:
                image = EFFECTS[model](image)

        if watermark:
            image = apply_watermark(image, self.watermark_label)
        return image

    def render(self, data: bytes, models: Iterable[str],
               max_width: Optional[int] = None, watermark: bool = False) -> bytes:
        """Decode, transform and re-encode; the result is always JPEG"""
        image = load_image(data)
        return encode_jpeg(self.apply_chain(image, models, max_width=max_width, watermark=watermark))

import io

from PIL import Image

from compression.base import FormatStrategy
from utils.format_detect import ImageFormat
from utils.image_handle import prepare_for_format


class WebpStrategy(FormatStrategy):
    """WebP probe: lossy Pillow encode, alpha preserved."""

    format = ImageFormat.WEBP

    def __init__(self, method: int = 4):
        # method=4: good compression, 2-3x faster than method=6
        self.method = method

    def prepare(self, img: Image.Image) -> Image.Image:
        return prepare_for_format(img, ImageFormat.WEBP)

    def probe(self, img: Image.Image, quality: int) -> bytes:
        buf = io.BytesIO()
        img.save(buf, format="WEBP", quality=quality, method=self.method)
        return buf.getvalue()

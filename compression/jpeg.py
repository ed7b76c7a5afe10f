import io

from PIL import Image

from compression.base import FormatStrategy
from utils.format_detect import ImageFormat
from utils.image_handle import prepare_for_format


class JpegStrategy(FormatStrategy):
    """JPEG probe: Pillow encode with Huffman optimization.

    Quality maps directly onto the encoder's quality setting. Alpha is
    flattened onto white once in ``prepare`` so each probe only encodes.
    """

    format = ImageFormat.JPEG

    def __init__(self, progressive: bool = False, dpi: int | None = None):
        self.progressive = progressive
        self.dpi = dpi

    def prepare(self, img: Image.Image) -> Image.Image:
        return prepare_for_format(img, ImageFormat.JPEG)

    def probe(self, img: Image.Image, quality: int) -> bytes:
        buf = io.BytesIO()
        save_kwargs: dict = {
            "format": "JPEG",
            "quality": quality,
            "optimize": True,
        }
        if self.progressive:
            save_kwargs["progressive"] = True
        if self.dpi:
            save_kwargs["dpi"] = (self.dpi, self.dpi)
        img.save(buf, **save_kwargs)
        return buf.getvalue()

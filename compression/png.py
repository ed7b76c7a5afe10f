import io

from PIL import Image

from compression.base import FormatStrategy
from utils.format_detect import ImageFormat


class PngStrategy(FormatStrategy):
    """PNG probe: lossy palette intermediate + lossless deflate squeeze.

    PNG has no quality knob, so quality selects the palette size of a
    quantized intermediate (2-256 colors); quality 100 skips quantization
    and stays lossless. Every probe is then re-deflated by oxipng and the
    smaller of the Pillow and oxipng encodings is kept.
    """

    format = ImageFormat.PNG

    def __init__(self, oxipng_level: int = 2):
        # Level 2 keeps per-probe cost low; the engine runs up to 10 probes
        self.oxipng_level = oxipng_level

    def prepare(self, img: Image.Image) -> Image.Image:
        if img.mode in ("RGB", "RGBA"):
            return img
        has_alpha = "A" in img.getbands() or "transparency" in img.info
        return img.convert("RGBA" if has_alpha else "RGB")

    def probe(self, img: Image.Image, quality: int) -> bytes:
        colors = self.colors_for_quality(quality)
        if colors is None:
            source = img
        else:
            # FASTOCTREE is the only built-in quantizer that handles RGBA
            source = img.quantize(
                colors=colors,
                method=Image.Quantize.FASTOCTREE,
                dither=Image.Dither.FLOYDSTEINBERG,
            )

        buf = io.BytesIO()
        source.save(buf, format="PNG", optimize=True)
        encoded = buf.getvalue()

        squeezed = self._run_oxipng(encoded)
        return squeezed if len(squeezed) < len(encoded) else encoded

    @staticmethod
    def colors_for_quality(quality: int) -> int | None:
        """Palette size for a quality, or None for lossless."""
        if quality >= 100:
            return None
        return max(2, min(256, int(256 * quality / 100)))

    def _run_oxipng(self, data: bytes) -> bytes:
        """Run oxipng in-process via pyoxipng library (no subprocess).

        Level: 0=fastest/least compression, 6=slowest/best compression.
        """
        import oxipng

        return oxipng.optimize_from_memory(data, level=self.oxipng_level)

from abc import ABC, abstractmethod

from PIL import Image

from utils.format_detect import ImageFormat


class FormatStrategy(ABC):
    """Format-specific probe for the size-targeted compression engine.

    Each strategy maps an integer quality (1-100) onto whatever knobs its
    codec exposes and returns the encoded bytes. The engine only relies on
    size being roughly monotone in quality.
    """

    format: ImageFormat

    def prepare(self, img: Image.Image) -> Image.Image:
        """Convert the source once before the search (mode changes, flattening)."""
        return img

    @abstractmethod
    def probe(self, img: Image.Image, quality: int) -> bytes:
        """Encode ``img`` at ``quality`` and return the bytes.

        Args:
            img: Buffer returned by ``prepare``.
            quality: Integer quality knob, 1 (smallest) to 100 (best).
        """

import io

from PIL import Image, ImageOps, UnidentifiedImageError

from exceptions import CodecFailureError, InvalidParameterError
from utils.format_detect import OPAQUE_FORMATS, PIL_FORMATS, ImageFormat, detect_format
from utils.lifecycle import RequestScope, RequestState

_ORIENTATION_TAG = 0x0112
# EXIF orientations that swap width and height
_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}


class ImageHandle:
    """Decoded image owned by one request.

    Opening only parses the header; the pixel surface is materialized on
    first access (inside the codec gate) and every derived buffer is
    registered with the request scope so it is closed deterministically.
    """

    def __init__(self, data: bytes, scope: RequestScope, filename: str | None = None):
        self.data = data
        self.scope = scope
        self.filename = filename
        self.format = detect_format(data)
        self.siblings: list["ImageHandle"] = []
        try:
            self._image = Image.open(io.BytesIO(data))
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise CodecFailureError(
                f"Could not decode {self.format.value} image",
                detail=str(exc),
            ) from exc
        scope.track(self._image)
        self._surface: Image.Image | None = None

    @classmethod
    def open(cls, data: bytes, scope: RequestScope, filename: str | None = None) -> "ImageHandle":
        if scope.state == RequestState.RECEIVED:
            scope.transition(RequestState.DECODING)
        return cls(data, scope, filename)

    # --- Metadata (header only, no pixel decode) ---

    @property
    def size(self) -> tuple[int, int]:
        if self._surface is not None:
            return self._surface.size
        width, height = self._image.size
        if self.orientation in _TRANSPOSED_ORIENTATIONS:
            return height, width
        return width, height

    @property
    def width(self) -> int:
        return self.size[0]

    @property
    def height(self) -> int:
        return self.size[1]

    @property
    def has_alpha(self) -> bool:
        return self._image.mode in ("RGBA", "LA", "PA") or (
            self._image.mode == "P" and "transparency" in self._image.info
        )

    @property
    def dpi(self) -> int | None:
        """Declared density, or None when the file carries none."""
        dpi = self._image.info.get("dpi")
        if not dpi:
            return None
        try:
            value = int(round(float(dpi[0])))
        except (TypeError, ValueError, IndexError):
            return None
        return value or None

    @property
    def orientation(self) -> int:
        try:
            return int(self._image.getexif().get(_ORIENTATION_TAG, 1))
        except (AttributeError, ValueError, TypeError):
            return 1

    # --- Pixel surface ---

    @property
    def surface(self) -> Image.Image:
        """Fully decoded, orientation-corrected pixels."""
        if self._surface is None:
            try:
                self._image.load()
                surface = ImageOps.exif_transpose(self._image)
            except (OSError, ValueError, Image.DecompressionBombError) as exc:
                raise CodecFailureError(
                    f"Could not decode {self.format.value} image",
                    detail=str(exc),
                ) from exc
            if surface is None:
                surface = self._image
            self._surface = self.scope.track(normalize_mode(surface))
        return self._surface

    def track(self, img: Image.Image) -> Image.Image:
        """Register an intermediate buffer and move the request to TRANSFORMING."""
        self.scope.transition(RequestState.TRANSFORMING)
        return self.scope.track(img)

    def new_canvas(self, size: tuple[int, int], color, mode: str | None = None) -> Image.Image:
        check_pixel_budget(*size)
        if mode is None:
            mode = "RGBA" if len(color) == 4 else "RGB"
        return self.track(Image.new(mode, size, color))

    # --- Encoding ---

    def begin_encoding(self) -> None:
        """Mark the request as encoding (for callers that run the codec themselves)."""
        self.scope.transition(RequestState.ENCODING)

    def encode(
        self,
        img: Image.Image,
        fmt: ImageFormat,
        quality: int | None = None,
        dpi: int | None = None,
        background=(255, 255, 255),
        **save_kwargs,
    ) -> bytes:
        """Encode a buffer, flattening alpha for formats that cannot hold it."""
        self.begin_encoding()
        prepared = prepare_for_format(img, fmt, background)
        if prepared is not img:
            self.scope.track(prepared)

        kwargs = dict(save_kwargs)
        if quality is not None and fmt in (ImageFormat.JPEG, ImageFormat.WEBP, ImageFormat.HEIC):
            kwargs["quality"] = quality
        if fmt == ImageFormat.JPEG:
            kwargs.setdefault("optimize", True)
        if fmt == ImageFormat.PNG:
            kwargs.setdefault("optimize", True)
        if dpi and fmt in (ImageFormat.JPEG, ImageFormat.PNG, ImageFormat.TIFF):
            kwargs["dpi"] = (dpi, dpi)

        buf = io.BytesIO()
        try:
            prepared.save(buf, format=PIL_FORMATS[fmt], **kwargs)
        except (OSError, ValueError, KeyError) as exc:
            raise CodecFailureError(
                f"Could not encode {fmt.value} image",
                detail=str(exc),
            ) from exc
        return buf.getvalue()


def normalize_mode(img: Image.Image) -> Image.Image:
    """Map decoded modes the recipes do not draw on to L or RGB.

    16-bit grayscale is scaled down rather than clipped.
    """
    if img.mode.startswith("I;16"):
        return img.convert("I").point(lambda v: v * (1 / 256)).convert("L")
    if img.mode in ("I", "F"):
        return img.convert("L")
    if img.mode in ("CMYK", "YCbCr", "LAB", "HSV"):
        return img.convert("RGB")
    return img


def check_pixel_budget(width: int, height: int) -> None:
    """Refuse an output size before its buffer is allocated.

    The ceiling is the decoder bomb threshold applied from CodecConfig.
    """
    limit = Image.MAX_IMAGE_PIXELS
    if limit and width * height > limit:
        raise InvalidParameterError(
            f"Output of {width}x{height} pixels exceeds the {limit} pixel limit",
            parameter="dimensions",
            width=width,
            height=height,
        )


def prepare_for_format(img: Image.Image, fmt: ImageFormat, background=(255, 255, 255)) -> Image.Image:
    """Convert a buffer to a mode the target encoder accepts.

    Alpha is composited over ``background`` for opaque formats.
    """
    if fmt in OPAQUE_FORMATS:
        if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            base = Image.new("RGB", rgba.size, tuple(background[:3]))
            base.paste(rgba, mask=rgba.getchannel("A"))
            return base
        if img.mode not in ("RGB", "L"):
            return img.convert("RGB")
        return img

    if fmt == ImageFormat.WEBP and img.mode not in ("RGB", "RGBA"):
        return img.convert("RGBA" if "A" in img.getbands() or "transparency" in img.info else "RGB")

    if fmt == ImageFormat.GIF and img.mode not in ("P", "L"):
        if "A" in img.getbands():
            return img.convert("RGBA").quantize(colors=255, method=Image.Quantize.FASTOCTREE)
        return img.convert("RGB").quantize(colors=256)

    if fmt == ImageFormat.PNG and img.mode not in ("RGB", "RGBA", "L", "LA", "P", "1", "I", "I;16"):
        return img.convert("RGBA")

    return img

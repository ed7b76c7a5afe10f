import struct
from enum import Enum

from exceptions import UnsupportedFormatError


class ImageFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    GIF = "gif"
    HEIC = "heic"
    TIFF = "tiff"
    BMP = "bmp"


# MIME type mapping
MIME_TYPES = {
    ImageFormat.PNG: "image/png",
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.GIF: "image/gif",
    ImageFormat.HEIC: "image/heic",
    ImageFormat.TIFF: "image/tiff",
    ImageFormat.BMP: "image/bmp",
}

# Pillow save() format names
PIL_FORMATS = {
    ImageFormat.PNG: "PNG",
    ImageFormat.JPEG: "JPEG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.GIF: "GIF",
    ImageFormat.HEIC: "HEIF",
    ImageFormat.TIFF: "TIFF",
    ImageFormat.BMP: "BMP",
}

# Filename extensions for generated output names
EXTENSIONS = {
    ImageFormat.PNG: "png",
    ImageFormat.JPEG: "jpg",
    ImageFormat.WEBP: "webp",
    ImageFormat.GIF: "gif",
    ImageFormat.HEIC: "heic",
    ImageFormat.TIFF: "tiff",
    ImageFormat.BMP: "bmp",
}

# Formats that cannot carry an alpha channel
OPAQUE_FORMATS = {ImageFormat.JPEG, ImageFormat.BMP}

_ALIASES = {
    "jpg": ImageFormat.JPEG,
    "jpeg": ImageFormat.JPEG,
    "png": ImageFormat.PNG,
    "webp": ImageFormat.WEBP,
    "gif": ImageFormat.GIF,
    "heic": ImageFormat.HEIC,
    "heif": ImageFormat.HEIC,
    "tif": ImageFormat.TIFF,
    "tiff": ImageFormat.TIFF,
    "bmp": ImageFormat.BMP,
}


def parse_format_name(name: str) -> ImageFormat | None:
    """Map a user-facing format name ("jpg", ".PNG", "image/webp") to ImageFormat."""
    key = name.strip().lower()
    if key.startswith("image/"):
        key = key[len("image/"):]
    return _ALIASES.get(key.lstrip("."))


def detect_format(data: bytes) -> ImageFormat:
    """Detect image format from magic bytes.

    Never trusts file extensions or Content-Type headers.

    Args:
        data: Raw image bytes (at least first 16 bytes needed).

    Returns:
        ImageFormat enum value.

    Raises:
        UnsupportedFormatError: If no known format matches.
    """
    if len(data) < 4:
        raise UnsupportedFormatError("File too small to identify format")

    # PNG: \x89PNG\r\n\x1a\n
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return ImageFormat.PNG

    # JPEG: \xFF\xD8\xFF
    if data[:3] == b"\xff\xd8\xff":
        return ImageFormat.JPEG

    # GIF: GIF87a or GIF89a
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return ImageFormat.GIF

    # WebP: RIFF....WEBP
    if data[:4] == b"RIFF" and len(data) >= 12 and data[8:12] == b"WEBP":
        return ImageFormat.WEBP

    # BMP: BM
    if data[:2] == b"BM":
        return ImageFormat.BMP

    # TIFF: II*\x00 (little-endian) or MM\x00* (big-endian)
    if data[:4] in (b"II\x2a\x00", b"MM\x00\x2a"):
        return ImageFormat.TIFF

    # HEIC: ISO BMFF ftyp box
    if len(data) >= 12 and data[4:8] == b"ftyp":
        return _detect_isobmff(data)

    raise UnsupportedFormatError(
        "Unrecognized file format",
        detected_bytes=data[:16].hex(),
    )


def _detect_isobmff(data: bytes) -> ImageFormat:
    """Detect HEIC from an ISO BMFF ftyp box.

    The ftyp box structure:
    - Bytes 0-3: box size (uint32 big-endian)
    - Bytes 4-7: 'ftyp'
    - Bytes 8-11: major brand (4 ASCII chars)
    - Bytes 12-15: minor version
    - Bytes 16+: compatible brands (4 bytes each)
    """
    heic_brands = (b"heic", b"heix", b"hevc", b"mif1", b"msf1")
    major_brand = data[8:12]
    if major_brand in heic_brands:
        return ImageFormat.HEIC

    box_size = struct.unpack(">I", data[:4])[0]
    box_end = min(box_size, len(data))
    offset = 16

    while offset + 4 <= box_end:
        if data[offset : offset + 4] in heic_brands:
            return ImageFormat.HEIC
        offset += 4

    raise UnsupportedFormatError(
        "ISO BMFF file with unrecognized brand",
        major_brand=major_brand.decode("ascii", errors="replace"),
    )

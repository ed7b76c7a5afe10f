from recipes.base import ToolFamily, ToolRecipe, image_output, output_filename
from utils.format_detect import ImageFormat, parse_format_name
from utils.image_handle import ImageHandle
from utils.params import ParamKind, ParamSpec, TransformParams

# tool id -> output format; the source side of the name is informational,
# any decodable upload is accepted
CONVERSIONS = {
    "heic-to-jpg": ImageFormat.JPEG,
    "heic-to-png": ImageFormat.PNG,
    "webp-to-jpg": ImageFormat.JPEG,
    "webp-to-png": ImageFormat.PNG,
    "png-to-jpeg": ImageFormat.JPEG,
    "png-to-jpg": ImageFormat.JPEG,
    "jpeg-to-png": ImageFormat.PNG,
    "jpg-to-png": ImageFormat.PNG,
    "jpg-to-webp": ImageFormat.WEBP,
    "png-to-webp": ImageFormat.WEBP,
    "gif-to-jpg": ImageFormat.JPEG,
    "gif-to-png": ImageFormat.PNG,
    "bmp-to-jpg": ImageFormat.JPEG,
    "bmp-to-png": ImageFormat.PNG,
    "tiff-to-jpg": ImageFormat.JPEG,
    "jpg-to-gif": ImageFormat.GIF,
    "jpg-to-bmp": ImageFormat.BMP,
    "jpg-to-tiff": ImageFormat.TIFF,
}

# Formats convert-format may write (HEIC is decode-only here)
WRITABLE_FORMATS = (
    ImageFormat.JPEG,
    ImageFormat.PNG,
    ImageFormat.WEBP,
    ImageFormat.GIF,
    ImageFormat.BMP,
    ImageFormat.TIFF,
)


def convert_handle(handle: ImageHandle, fmt: ImageFormat, params: TransformParams):
    surface = handle.surface
    return image_output(
        handle,
        surface,
        fmt,
        output_filename("converted", fmt),
        quality=params["quality"],
        background=params["background"],
        diagnostics={"source_format": handle.format.value, "target_format": fmt.value},
    )


def _fixed_conversion(tool_id: str, fmt: ImageFormat):
    def apply(handle: ImageHandle, params: TransformParams):
        return convert_handle(handle, fmt, params)

    apply.__name__ = tool_id.replace("-", "_")
    return apply


def convert_format(handle: ImageHandle, params: TransformParams):
    fmt = parse_format_name(params["format"])
    if fmt not in WRITABLE_FORMATS:
        fmt = ImageFormat.JPEG
    return convert_handle(handle, fmt, params)


_COMMON = (
    ParamSpec("quality", ParamKind.INT, default=90, min_value=1, max_value=100),
    # Alpha is composited onto this when the target format has none
    ParamSpec("background", ParamKind.COLOR, default="white"),
)

RECIPES = [
    ToolRecipe(
        id=tool_id,
        family=ToolFamily.CONVERT,
        apply=_fixed_conversion(tool_id, fmt),
        params=_COMMON,
        description=f"Convert to {fmt.value.upper()}",
    )
    for tool_id, fmt in CONVERSIONS.items()
] + [
    ToolRecipe(
        id="convert-format",
        family=ToolFamily.CONVERT,
        apply=convert_format,
        params=(
            ParamSpec(
                "format",
                ParamKind.ENUM,
                default="jpeg",
                choices=("jpeg", "jpg", "png", "webp", "gif", "bmp", "tiff", "tif"),
            ),
            *_COMMON,
        ),
        description="Convert to the requested format",
    ),
]

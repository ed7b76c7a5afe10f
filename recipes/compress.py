import math

from PIL import Image

from compression.engine import compress_to_size, default_target
from recipes.base import ToolFamily, ToolRecipe, image_output, output_filename
from schemas import EncodedOutput
from utils.format_detect import MIME_TYPES, ImageFormat, parse_format_name
from utils.image_handle import ImageHandle, check_pixel_budget
from utils.logging import get_logger
from utils.params import ParamKind, ParamSpec, TransformParams

logger = get_logger("recipes.compress")

# Fixed-budget tools: id suffix -> budget in KB
FIXED_BUDGETS_KB = {
    "5kb": 5,
    "10kb": 10,
    "15kb": 15,
    "20kb": 20,
    "25kb": 25,
    "30kb": 30,
    "40kb": 40,
    "50kb": 50,
    "100kb": 100,
    "150kb": 150,
    "200kb": 200,
    "300kb": 300,
    "500kb": 500,
    "1mb": 1024,
    "2mb": 2048,
}


def compress_handle(
    handle: ImageHandle,
    target_kb: int,
    fmt: ImageFormat = ImageFormat.JPEG,
    prefix: str = "compressed",
) -> EncodedOutput:
    """Run the size-targeted engine on the request's surface."""
    target = default_target(target_kb * 1024, fmt)
    surface = handle.surface
    handle.begin_encoding()
    result = compress_to_size(surface, target)

    diagnostics = {
        "original_size": str(len(handle.data)),
        "dimensions": f"{surface.width}x{surface.height}",
        **result.diagnostics(),
    }
    if result.timed_out:
        diagnostics["timed_out"] = "true"
    if not result.target_met:
        diagnostics["shortfall_bytes"] = str(result.achieved_bytes - result.target_bytes)

    return EncodedOutput(
        content=result.encoded_bytes,
        content_type=MIME_TYPES[fmt],
        suggested_filename=output_filename(prefix, fmt, f"{target_kb}kb"),
        diagnostics=diagnostics,
    )


def _fixed_budget(suffix: str, kb: int):
    def apply(handle: ImageHandle, params: TransformParams):
        return compress_handle(handle, kb)

    apply.__name__ = f"compress_{suffix}"
    return apply


def compress_kb(handle: ImageHandle, params: TransformParams):
    return compress_handle(handle, params["targetKB"])


def mb_to_kb(handle: ImageHandle, params: TransformParams):
    return compress_handle(handle, params["targetKB"], prefix="mb_to")


def compress_to_target(handle: ImageHandle, params: TransformParams):
    fmt = parse_format_name(params["format"]) or ImageFormat.JPEG
    return compress_handle(handle, params["targetKB"], fmt=fmt)


def increase_size_kb(handle: ImageHandle, params: TransformParams):
    """Grow a file toward a byte budget by upscaling at high quality.

    If the q=95 encoding is already at or above the target it is returned
    as is; otherwise the image is enlarged by sqrt(target / size), since
    encoded size scales roughly with pixel count.
    """
    target_kb = params["targetKB"]
    target_bytes = target_kb * 1024
    surface = handle.surface
    filename = output_filename("increased", ImageFormat.JPEG, f"{target_kb}kb")

    first = handle.encode(surface, ImageFormat.JPEG, quality=95)
    if len(first) >= target_bytes:
        return EncodedOutput(
            content=first,
            content_type=MIME_TYPES[ImageFormat.JPEG],
            suggested_filename=filename,
            diagnostics={
                "original_size": str(len(handle.data)),
                "output_size": str(len(first)),
                "target_size": str(target_bytes),
                "scale_factor": "1.0",
            },
        )

    scale = math.sqrt(target_bytes / len(first))
    size = (round(surface.width * scale), round(surface.height * scale))
    logger.debug(
        f"Upscaling {surface.width}x{surface.height} -> {size[0]}x{size[1]} for size increase",
        extra={"context": {"target_bytes": target_bytes, "first_pass": len(first)}},
    )
    check_pixel_budget(*size)
    enlarged = handle.track(surface.resize(size, Image.Resampling.LANCZOS))
    return image_output(
        handle,
        enlarged,
        ImageFormat.JPEG,
        filename,
        quality=95,
        diagnostics={"target_size": target_bytes, "scale_factor": f"{scale:.3f}"},
    )


def _target_kb(default: int) -> ParamSpec:
    return ParamSpec(
        "targetKB",
        ParamKind.INT,
        default=default,
        min_value=1,
        max_value=100 * 1024,
        aliases=("size",),
    )


RECIPES = [
    ToolRecipe(
        id=f"compress-{suffix}",
        family=ToolFamily.COMPRESS,
        apply=_fixed_budget(suffix, kb),
        description=f"Compress to at most {suffix.upper()}",
    )
    for suffix, kb in FIXED_BUDGETS_KB.items()
] + [
    ToolRecipe(
        id="reduce-size-kb",
        family=ToolFamily.COMPRESS,
        apply=compress_kb,
        params=(_target_kb(100),),
        description="Compress to a byte budget in KB",
    ),
    ToolRecipe(
        id="compress-kb",
        family=ToolFamily.COMPRESS,
        apply=compress_kb,
        params=(_target_kb(100),),
        description="Compress to a byte budget in KB",
    ),
    ToolRecipe(
        id="mb-to-kb",
        family=ToolFamily.COMPRESS,
        apply=mb_to_kb,
        params=(_target_kb(500),),
        description="Shrink a multi-megabyte image to a KB budget",
    ),
    ToolRecipe(
        id="increase-size-kb",
        family=ToolFamily.COMPRESS,
        apply=increase_size_kb,
        params=(_target_kb(200),),
        description="Grow an image toward a KB size",
    ),
    ToolRecipe(
        id="compress-to-size",
        family=ToolFamily.COMPRESS,
        apply=compress_to_target,
        params=(
            _target_kb(100),
            ParamSpec("format", ParamKind.ENUM, default="jpeg", choices=("jpeg", "jpg", "png", "webp")),
        ),
        description="Compress to a byte budget as JPEG, PNG or WebP",
    ),
]

"""Resize recipes: explicit dimensions in any unit plus fixed presets.

Fit modes follow the usual box-fitting vocabulary:
    cover   - fill the box, crop the overflow (centered)
    contain - fit inside the box, pad the rest with ``background``
    inside  - fit inside the box, no padding (output may be smaller)
    fill    - stretch to the exact box, ignoring aspect ratio
"""

from PIL import Image, ImageOps

from recipes.base import ToolFamily, ToolRecipe, image_output, output_filename
from utils.format_detect import ImageFormat
from utils.geometry import LengthUnit, to_pixels
from utils.image_handle import ImageHandle, check_pixel_budget
from utils.params import ParamKind, ParamSpec, TransformParams, dpi_spec, unit_spec

FIT_MODES = ("cover", "contain", "inside", "fill")
WHITE = (255, 255, 255)
TRANSPARENT = (0, 0, 0, 0)


def fit_image(img: Image.Image, width: int, height: int, fit: str = "cover", background=WHITE) -> Image.Image:
    """Resize ``img`` into a ``width`` x ``height`` box using ``fit``."""
    check_pixel_budget(width, height)
    if fit == "fill":
        return img.resize((width, height), Image.Resampling.LANCZOS)
    if fit == "cover":
        return ImageOps.fit(img, (width, height), Image.Resampling.LANCZOS)

    ratio = min(width / img.width, height / img.height)
    scaled = (max(1, round(img.width * ratio)), max(1, round(img.height * ratio)))
    resized = img.resize(scaled, Image.Resampling.LANCZOS)
    if fit == "inside":
        return resized

    return pad_to_box(resized, width, height, background)


def pad_to_box(img: Image.Image, width: int, height: int, background=WHITE) -> Image.Image:
    """Center ``img`` on a ``width`` x ``height`` canvas of ``background``."""
    mode = "RGBA" if len(background) == 4 else "RGB"
    canvas = Image.new(mode, (width, height), tuple(background))
    source = img.convert("RGBA")
    offset = ((width - img.width) // 2, (height - img.height) // 2)
    canvas.paste(source, offset, mask=source.getchannel("A"))
    source.close()
    return canvas


def same_format(handle: ImageHandle) -> ImageFormat:
    """Output format that preserves the upload's format where it can be encoded."""
    if handle.format == ImageFormat.HEIC:
        return ImageFormat.JPEG
    return handle.format


# --- Recipes ---


def resize_pixel(handle: ImageHandle, params: TransformParams):
    width, height = params["width"], params["height"]
    fit = "inside" if params["maintainAspectRatio"] else "fill"
    out = handle.track(fit_image(handle.surface, width, height, fit))
    fmt = same_format(handle)
    return image_output(
        handle,
        out,
        fmt,
        output_filename("resized", fmt, f"{out.width}x{out.height}"),
        quality=params["quality"],
    )


def _resize_unit(handle: ImageHandle, params: TransformParams, unit: LengthUnit):
    out = handle.track(
        fit_image(
            handle.surface,
            params["width"],
            params["height"],
            params.get("fit", "cover"),
            params.get("background", WHITE),
        )
    )
    w, h = params.raw_lengths["width"], params.raw_lengths["height"]
    return image_output(
        handle,
        out,
        ImageFormat.JPEG,
        output_filename("resized", ImageFormat.JPEG, f"{w:g}x{h:g}{unit.value}"),
        quality=params["quality"],
        dpi=params.dpi,
        diagnostics={"dpi": params.dpi, "unit": unit.value},
    )


def resize_by_unit(handle: ImageHandle, params: TransformParams):
    return _resize_unit(handle, params, params.unit)


def _fixed_unit(unit: LengthUnit):
    def apply(handle: ImageHandle, params: TransformParams):
        return _resize_unit(handle, params, unit)

    apply.__name__ = f"resize_{unit.name.lower()}"
    return apply


def _length(name: str, unit: LengthUnit | None = None) -> ParamSpec:
    return ParamSpec(name, ParamKind.LENGTH, required=True, unit=unit)


_QUALITY = ParamSpec("quality", ParamKind.INT, default=90, min_value=1, max_value=100)
_FIT = ParamSpec("fit", ParamKind.ENUM, default="cover", choices=FIT_MODES)
_BACKGROUND = ParamSpec("background", ParamKind.COLOR, default="white")


def _unit_recipe(tool_id: str, unit: LengthUnit) -> ToolRecipe:
    return ToolRecipe(
        id=tool_id,
        family=ToolFamily.RESIZE,
        apply=_fixed_unit(unit),
        params=(
            dpi_spec(),
            _length("width", unit),
            _length("height", unit),
            _FIT,
            _BACKGROUND,
            _QUALITY,
        ),
        description=f"Resize to width x height in {unit.value} at the given DPI",
    )


def resize_signature(handle: ImageHandle, params: TransformParams):
    width, height = params["width"], params["height"]
    out = handle.track(fit_image(handle.surface, width, height, "contain", TRANSPARENT))
    return image_output(
        handle,
        out,
        ImageFormat.PNG,
        output_filename("signature", ImageFormat.PNG, f"{width}x{height}"),
    )


# --- Presets ---


def preset(
    tool_id: str,
    width: float,
    height: float,
    unit: LengthUnit = LengthUnit.PX,
    fit: str = "cover",
    prefix: str | None = None,
    quality: int = 90,
    background=WHITE,
    fmt: ImageFormat = ImageFormat.JPEG,
) -> ToolRecipe:
    """Fixed-size resize tool. Physical sizes are converted at the request DPI."""

    def apply(handle: ImageHandle, params: TransformParams):
        w = to_pixels(width, unit, params.dpi)
        h = to_pixels(height, unit, params.dpi)
        out = handle.track(fit_image(handle.surface, w, h, fit, background))
        return image_output(
            handle,
            out,
            fmt,
            output_filename(prefix or tool_id.removeprefix("resize-").replace("-", "_"), fmt),
            quality=params["quality"],
            dpi=params.dpi if unit != LengthUnit.PX else None,
            background=background if len(background) == 3 else WHITE,
            diagnostics={"preset": tool_id, "width": w, "height": h},
        )

    apply.__name__ = tool_id.replace("-", "_")
    return ToolRecipe(
        id=tool_id,
        family=ToolFamily.RESIZE,
        apply=apply,
        params=(
            dpi_spec(),
            ParamSpec("quality", ParamKind.INT, default=quality, min_value=1, max_value=100),
        ),
        description=f"Resize to {width:g}x{height:g} {unit.value} ({fit})",
    )



RECIPES = [
    ToolRecipe(
        id="resize-pixel",
        family=ToolFamily.RESIZE,
        apply=resize_pixel,
        params=(
            _length("width", LengthUnit.PX),
            _length("height", LengthUnit.PX),
            ParamSpec("maintainAspectRatio", ParamKind.BOOL, default=True),
            _QUALITY,
        ),
        description="Resize to pixel dimensions",
    ),
    ToolRecipe(
        id="resize",
        family=ToolFamily.RESIZE,
        apply=resize_by_unit,
        params=(
            dpi_spec(),
            unit_spec("px"),
            _length("width"),
            _length("height"),
            _FIT,
            _BACKGROUND,
            _QUALITY,
        ),
        description="Resize with width/height in px, mm, cm or in",
    ),
    _unit_recipe("resize-cm", LengthUnit.CM),
    _unit_recipe("resize-mm", LengthUnit.MM),
    _unit_recipe("resize-inches", LengthUnit.INCH),
    preset("resize-6cm-2cm", 6, 2, LengthUnit.CM, prefix="resized_6cm_2cm"),
    preset("resize-whatsapp-dp", 500, 500, prefix="whatsapp_dp"),
    preset("resize-whatsapp", 500, 500, prefix="whatsapp_dp", quality=85),
    preset("resize-instagram", 1080, 1080, prefix="instagram_post"),
    preset("resize-instagram-grid", 1080, 1080, prefix="instagram_grid"),
    preset("resize-instagram-no-crop", 1080, 1080, fit="contain", prefix="instagram_no_crop"),
    preset("resize-youtube-banner", 2560, 1440, prefix="youtube_banner"),
    preset("resize-ssc", 300, 300, prefix="ssc_photo"),
    preset("resize-pan-card", 300, 360, prefix="pan_card_photo"),
    preset("resize-upsc", 300, 400, prefix="upsc_photo"),
    preset("resize-a4", 8.27, 11.69, LengthUnit.INCH, fit="contain", prefix="a4"),
    preset("resize-4x6", 4, 6, LengthUnit.INCH, prefix="photo_4x6"),
    preset("resize-3x4", 3, 4, LengthUnit.CM, prefix="photo_3x4"),
    preset("resize-2x2-inch", 2, 2, LengthUnit.INCH, prefix="photo_2x2"),
    preset("resize-600x600", 600, 600, prefix="photo_600x600"),
    preset("resize-35mm-45mm", 35, 45, LengthUnit.MM, prefix="photo_35x45mm"),
    ToolRecipe(
        id="resize-signature",
        family=ToolFamily.RESIZE,
        apply=resize_signature,
        params=(
            ParamSpec("width", ParamKind.LENGTH, default=200, unit=LengthUnit.PX),
            ParamSpec("height", ParamKind.LENGTH, default=50, unit=LengthUnit.PX),
        ),
        description="Fit a signature into a transparent PNG box",
    ),
]

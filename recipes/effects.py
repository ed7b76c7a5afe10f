"""Cosmetic and editing recipes.

All of these operate on the single decoded surface and write JPEG unless
the result needs an alpha channel (circle crop, background removal,
transparent signatures), in which case PNG is written.
"""

from PIL import Image, ImageChops, ImageDraw, ImageEnhance, ImageFilter, ImageFont, ImageOps

from recipes.base import ToolFamily, ToolRecipe, image_output, output_filename
from utils.format_detect import ImageFormat
from utils.geometry import face_region_box
from utils.image_handle import ImageHandle, prepare_for_format
from utils.params import ParamKind, ParamSpec, TransformParams

JPEG = ImageFormat.JPEG
PNG = ImageFormat.PNG

SEPIA_MATRIX = (
    0.393, 0.769, 0.189, 0,
    0.349, 0.686, 0.168, 0,
    0.272, 0.534, 0.131, 0,
)

WATERMARK_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right", "center")
# Pixels with every channel at or above this are treated as background
NEAR_WHITE = 240


def _rgb(handle: ImageHandle) -> Image.Image:
    """The surface as RGB, alpha flattened onto white."""
    img = handle.surface
    if img.mode == "RGB":
        return img
    flat = prepare_for_format(img, JPEG)
    if flat.mode != "RGB":
        flat = flat.convert("RGB")
    return handle.track(flat)


def _jpeg(handle: ImageHandle, img: Image.Image, prefix: str, *parts, quality: int = 90, **diagnostics):
    return image_output(
        handle,
        handle.track(img),
        JPEG,
        output_filename(prefix, JPEG, *parts),
        quality=quality,
        diagnostics=diagnostics or None,
    )


def _png(handle: ImageHandle, img: Image.Image, prefix: str, *parts, **diagnostics):
    return image_output(
        handle,
        handle.track(img),
        PNG,
        output_filename(prefix, PNG, *parts),
        diagnostics=diagnostics or None,
    )


def pixelate_image(img: Image.Image, factor: int) -> Image.Image:
    """Nearest-neighbour downscale by ``factor`` then back up to the original size."""
    factor = max(1, factor)
    small = img.resize(
        (max(1, img.width // factor), max(1, img.height // factor)),
        Image.Resampling.NEAREST,
    )
    out = small.resize(img.size, Image.Resampling.NEAREST)
    small.close()
    return out


def load_font(size: int) -> ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


# --- Tone and color ---


def grayscale(handle: ImageHandle, params: TransformParams):
    return _jpeg(handle, ImageOps.grayscale(_rgb(handle)), "grayscale")


def black_white(handle: ImageHandle, params: TransformParams):
    threshold = params["threshold"]
    gray = handle.track(ImageOps.grayscale(_rgb(handle)))
    bw = gray.point(lambda v: 255 if v >= threshold else 0)
    return _jpeg(handle, bw, "black_white", threshold=threshold)


def sharpen(handle: ImageHandle, params: TransformParams):
    out = _rgb(handle).filter(
        ImageFilter.UnsharpMask(radius=params["radius"], percent=params["amount"], threshold=3)
    )
    return _jpeg(handle, out, "sharpened")


def invert(handle: ImageHandle, params: TransformParams):
    return _jpeg(handle, ImageOps.invert(_rgb(handle)), "inverted")


def sepia(handle: ImageHandle, params: TransformParams):
    out = _rgb(handle).convert("RGB", SEPIA_MATRIX)
    return _jpeg(handle, out, "sepia")


def brightness(handle: ImageHandle, params: TransformParams):
    level = params["level"]
    out = ImageEnhance.Brightness(_rgb(handle)).enhance(level)
    return _jpeg(handle, out, "brightness", f"{level:g}", level=level)


def contrast(handle: ImageHandle, params: TransformParams):
    level = params["level"]
    out = ImageEnhance.Contrast(_rgb(handle)).enhance(level)
    return _jpeg(handle, out, "contrast", f"{level:g}", level=level)


# --- Pixelate / blur ---


def pixelate(handle: ImageHandle, params: TransformParams):
    factor = params["intensity"]
    return _jpeg(handle, pixelate_image(_rgb(handle), factor), "pixelated", factor=factor)


def blur(handle: ImageHandle, params: TransformParams):
    radius = params["intensity"]
    out = _rgb(handle).filter(ImageFilter.GaussianBlur(radius))
    return _jpeg(handle, out, "blurred", radius=radius)


def _face_effect(handle: ImageHandle, effect) -> tuple[Image.Image, tuple[int, int, int, int]]:
    """Apply ``effect`` to the estimated face region only."""
    img = handle.track(_rgb(handle).copy())
    box = face_region_box(img.width, img.height)
    region = handle.track(img.crop(box))
    img.paste(handle.track(effect(region)), box[:2])
    return img, box


def pixelate_face(handle: ImageHandle, params: TransformParams):
    factor = params["pixelSize"]
    img, box = _face_effect(handle, lambda region: pixelate_image(region, factor))
    return _jpeg(handle, img, "pixelated_face", region=",".join(map(str, box)))


def blur_face(handle: ImageHandle, params: TransformParams):
    radius = params["blurAmount"]
    img, box = _face_effect(handle, lambda region: region.filter(ImageFilter.GaussianBlur(radius)))
    return _jpeg(handle, img, "blurred_face", region=",".join(map(str, box)))


# --- Geometry ---


def rotate(handle: ImageHandle, params: TransformParams):
    angle = params["angle"]
    # PIL rotates counter-clockwise; the tool's angle is clockwise
    out = _rgb(handle).rotate(
        -angle,
        resample=Image.Resampling.BICUBIC,
        expand=True,
        fillcolor=tuple(params["background"][:3]),
    )
    return _jpeg(handle, out, "rotated", f"{angle:g}deg")


def flip(handle: ImageHandle, params: TransformParams):
    direction = params["direction"]
    img = _rgb(handle)
    if direction in ("horizontal", "both"):
        img = handle.track(ImageOps.mirror(img))
    if direction in ("vertical", "both"):
        img = handle.track(ImageOps.flip(img))
    return _jpeg(handle, img, "flipped", direction)


def crop(handle: ImageHandle, params: TransformParams):
    surface = handle.surface
    # Clamp the box to the image so an oversized request still yields pixels
    left = min(params["x"], surface.width - 1)
    top = min(params["y"], surface.height - 1)
    width = params["width"] or surface.width - left
    height = params["height"] or surface.height - top
    right = min(surface.width, left + width)
    bottom = min(surface.height, top + height)
    out = _rgb(handle).crop((left, top, right, bottom))
    return _jpeg(handle, out, "cropped", f"{right - left}x{bottom - top}")


# --- Overlays and masks ---


def circle_crop(handle: ImageHandle, params: TransformParams):
    surface = handle.surface
    size = min(surface.width, surface.height)
    square = handle.track(ImageOps.fit(surface.convert("RGBA"), (size, size), Image.Resampling.LANCZOS))

    mask = handle.track(Image.new("L", (size, size), 0))
    ImageDraw.Draw(mask).ellipse((0, 0, size - 1, size - 1), fill=255)
    circle = handle.new_canvas((size, size), (0, 0, 0, 0))
    circle.paste(square, (0, 0), mask=mask)

    if not params["border"]:
        return _png(handle, circle, "circle")

    border = params["borderWidth"]
    outer = size + border * 2
    framed = handle.new_canvas((outer, outer), (0, 0, 0, 0))
    ImageDraw.Draw(framed).ellipse((0, 0, outer - 1, outer - 1), fill=tuple(params["borderColor"]))
    framed.alpha_composite(circle, (border, border))
    return _png(handle, framed, "circle", "border", border_width=border)


def _text_anchor(position: str, width: int, height: int, margin: int = 20) -> tuple[tuple[int, int], str]:
    if position == "center":
        return (width // 2, height // 2), "mm"
    x = width - margin if "right" in position else margin
    y = height - margin if "bottom" in position else margin
    horizontal = "r" if "right" in position else "l"
    vertical = "d" if "bottom" in position else "a"
    return (x, y), horizontal + vertical


def watermark(handle: ImageHandle, params: TransformParams):
    base = handle.track(handle.surface.convert("RGBA"))
    layer = handle.new_canvas(base.size, (255, 255, 255, 0))
    alpha = int(round(255 * params["opacity"]))
    xy, anchor = _text_anchor(params["position"], base.width, base.height)
    ImageDraw.Draw(layer).text(
        xy,
        params["text"],
        font=load_font(params["fontSize"]),
        fill=(255, 255, 255, alpha),
        anchor=anchor,
    )
    out = Image.alpha_composite(base, layer)
    return _jpeg(handle, out, "watermarked", params["position"])


def add_text(handle: ImageHandle, params: TransformParams):
    img = handle.track(_rgb(handle).copy())
    ImageDraw.Draw(img).text(
        (params["x"], params["y"]),
        params["text"],
        font=load_font(params["fontSize"]),
        fill=tuple(params["color"][:3]),
    )
    return _jpeg(handle, img, "text_overlay")


def remove_background(handle: ImageHandle, params: TransformParams):
    """Make near-white pixels transparent.

    A threshold key, not segmentation: suitable for documents, signatures
    and product shots on a light backdrop.
    """
    threshold = params["threshold"]
    rgba = handle.track(handle.surface.convert("RGBA"))
    r, g, b, alpha = rgba.split()

    def below(channel: Image.Image) -> Image.Image:
        return channel.point(lambda v: 255 if v < threshold else 0)

    # Opaque wherever any channel is darker than the threshold
    foreground = ImageChops.lighter(ImageChops.lighter(below(r), below(g)), below(b))
    rgba.putalpha(ImageChops.darker(alpha, foreground))
    return _png(handle, rgba, "no_background", threshold=threshold)


# --- Signature and metadata ---


def _enhance_signature(img: Image.Image) -> Image.Image:
    img = ImageOps.autocontrast(img)
    img = img.filter(ImageFilter.SHARPEN)
    img = ImageEnhance.Brightness(img).enhance(1.1)
    return ImageEnhance.Color(img).enhance(0.9)


def signature(handle: ImageHandle, params: TransformParams):
    img = _rgb(handle)
    img = handle.track(img.copy())
    img.thumbnail((params["width"], params["height"]), Image.Resampling.LANCZOS)
    if params["enhance"]:
        img = handle.track(_enhance_signature(img))
    return _jpeg(handle, img, "signature", quality=95)


def generate_signature(handle: ImageHandle, params: TransformParams):
    background = params["background"]
    img = handle.surface
    if params["enhance"]:
        img = handle.track(img.convert("RGB").filter(ImageFilter.UnsharpMask(radius=2, percent=150, threshold=3)))
        img = handle.track(ImageEnhance.Brightness(img).enhance(1.1))
        img = ImageEnhance.Contrast(img).enhance(1.2)

    if len(background) == 4 and background[3] == 0:
        return _png(handle, img, "signature")
    return image_output(
        handle,
        handle.track(img),
        JPEG,
        output_filename("signature", JPEG),
        quality=95,
        background=background,
    )


def convert_dpi(handle: ImageHandle, params: TransformParams):
    dpi = params["dpi"]
    return image_output(
        handle,
        handle.surface,
        JPEG,
        output_filename(f"{dpi}dpi", JPEG),
        quality=95,
        dpi=dpi,
        diagnostics={"source_dpi": handle.dpi or "unset", "dpi": dpi},
    )


def _intensity(name: str, default: float, max_value: float, kind=ParamKind.INT, min_value: float = 1) -> ParamSpec:
    return ParamSpec(name, kind, default=default, min_value=min_value, max_value=max_value)


_LEVEL = ParamSpec("level", ParamKind.FLOAT, default=1.2, min_value=0.0, max_value=5.0)


def _recipe(tool_id: str, apply, *params: ParamSpec, description: str = "") -> ToolRecipe:
    return ToolRecipe(
        id=tool_id,
        family=ToolFamily.EFFECTS,
        apply=apply,
        params=params,
        description=description,
    )


RECIPES = [
    _recipe("grayscale", grayscale, description="Convert to grayscale"),
    _recipe(
        "black-white",
        black_white,
        _intensity("threshold", 128, 255, min_value=0),
        description="Two-tone black and white at a luminance threshold",
    ),
    _recipe(
        "sharpen",
        sharpen,
        _intensity("radius", 2.0, 10.0, kind=ParamKind.FLOAT, min_value=0.1),
        _intensity("amount", 150, 500),
        description="Unsharp-mask sharpen",
    ),
    _recipe("invert", invert, description="Invert colors"),
    _recipe("sepia", sepia, description="Sepia tone"),
    _recipe("brightness", brightness, _LEVEL, description="Scale brightness by level"),
    _recipe("contrast", contrast, _LEVEL, description="Scale contrast by level"),
    _recipe(
        "pixelate",
        pixelate,
        _intensity("intensity", 10, 200),
        description="Pixelate the whole image",
    ),
    _recipe(
        "pixelate-face",
        pixelate_face,
        _intensity("pixelSize", 20, 200),
        description="Pixelate the estimated face region",
    ),
    _recipe(
        "blur",
        blur,
        _intensity("intensity", 10, 100, kind=ParamKind.FLOAT, min_value=0.3),
        description="Gaussian blur",
    ),
    _recipe(
        "blur-face",
        blur_face,
        _intensity("blurAmount", 10, 100, kind=ParamKind.FLOAT, min_value=0.3),
        description="Blur the estimated face region",
    ),
    _recipe(
        "rotate",
        rotate,
        ParamSpec("angle", ParamKind.FLOAT, default=90, min_value=-360, max_value=360),
        ParamSpec("background", ParamKind.COLOR, default="white"),
        description="Rotate clockwise, expanding the canvas",
    ),
    _recipe(
        "flip",
        flip,
        ParamSpec(
            "direction",
            ParamKind.ENUM,
            default="horizontal",
            choices=("horizontal", "vertical", "both"),
        ),
        description="Mirror horizontally, vertically or both",
    ),
    _recipe(
        "crop",
        crop,
        ParamSpec("x", ParamKind.INT, default=0, min_value=0, aliases=("left",)),
        ParamSpec("y", ParamKind.INT, default=0, min_value=0, aliases=("top",)),
        ParamSpec("width", ParamKind.INT, default=0, min_value=0),
        ParamSpec("height", ParamKind.INT, default=0, min_value=0),
        description="Crop a pixel rectangle (clamped to the image)",
    ),
    _recipe(
        "circle-crop",
        circle_crop,
        ParamSpec("border", ParamKind.BOOL, default=False),
        ParamSpec("borderColor", ParamKind.COLOR, default="white"),
        ParamSpec("borderWidth", ParamKind.INT, default=10, min_value=1, max_value=200),
        description="Circular crop with transparent corners",
    ),
    _recipe(
        "watermark",
        watermark,
        ParamSpec("text", ParamKind.STR, default="WATERMARK"),
        ParamSpec("position", ParamKind.ENUM, default="bottom-right", choices=WATERMARK_POSITIONS),
        ParamSpec("opacity", ParamKind.FLOAT, default=0.5, min_value=0.0, max_value=1.0),
        ParamSpec("fontSize", ParamKind.INT, default=48, min_value=6, max_value=512),
        description="Overlay semi-transparent text",
    ),
    _recipe(
        "add-text",
        add_text,
        ParamSpec("text", ParamKind.STR, default="Sample Text"),
        ParamSpec("x", ParamKind.INT, default=50, min_value=0),
        ParamSpec("y", ParamKind.INT, default=50, min_value=0),
        ParamSpec("fontSize", ParamKind.INT, default=24, min_value=6, max_value=512),
        ParamSpec("color", ParamKind.COLOR, default="white"),
        description="Draw text at a position",
    ),
    _recipe(
        "remove-background",
        remove_background,
        _intensity("threshold", NEAR_WHITE, 255, min_value=0),
        description="Make near-white background transparent",
    ),
    _recipe(
        "signature",
        signature,
        ParamSpec("width", ParamKind.INT, default=300, min_value=1, max_value=4000),
        ParamSpec("height", ParamKind.INT, default=100, min_value=1, max_value=4000),
        ParamSpec("enhance", ParamKind.BOOL, default=True),
        description="Clean up a scanned signature on white",
    ),
    _recipe(
        "generate-signature",
        generate_signature,
        ParamSpec("enhance", ParamKind.BOOL, default=True),
        ParamSpec("background", ParamKind.COLOR, default="transparent"),
        description="Enhance a signature; PNG when the background is transparent",
    ),
    _recipe(
        "convert-dpi",
        convert_dpi,
        ParamSpec("dpi", ParamKind.INT, default=300, min_value=1, max_value=2400),
        description="Rewrite the density metadata",
    ),
]

"""Composite and document recipes: passport photos, print sheets, grids,
PDF assembly, and the JSON-returning inspection tools (DPI, color, OCR).
"""

import asyncio
import io
import re

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, ImageStat

from config import settings
from exceptions import CollaboratorError
from recipes.base import OutputKind, ToolFamily, ToolRecipe, image_output, output_filename
from recipes.resize import WHITE, fit_image
from schemas import EncodedOutput, JsonOutput
from utils.format_detect import ImageFormat
from utils.geometry import GridLayout, LengthUnit, face_region_box, parse_unit, scale_to_fit, to_pixels
from utils.image_handle import ImageHandle, check_pixel_budget
from utils.logging import get_logger
from utils.params import ParamKind, ParamSpec, TransformParams, dpi_spec
from utils.subprocess_runner import run_collaborator

logger = get_logger("recipes.document")

JPEG = ImageFormat.JPEG

# Photo dimensions per issuing country
COUNTRY_PRESETS: dict[str, tuple[float, float, LengthUnit]] = {
    "us": (2, 2, LengthUnit.INCH),
    "uk": (35, 45, LengthUnit.MM),
    "canada": (35, 45, LengthUnit.MM),
    "australia": (35, 45, LengthUnit.MM),
    "india": (35, 35, LengthUnit.MM),
    "germany": (35, 45, LengthUnit.MM),
    "france": (35, 45, LengthUnit.MM),
    "china": (33, 48, LengthUnit.MM),
}

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*x\s*(\d+(?:\.\d+)?)\s*([a-z]*)\s*$")

# Below this on either side a print photo will look soft
MIN_SOURCE_PIXELS = 600
# Mean corner brightness under this is reported as a non-white backdrop
WHITE_BACKGROUND_LEVEL = 220

# Formats the OCR engine reads directly from stdin
OCR_NATIVE_FORMATS = {ImageFormat.JPEG, ImageFormat.PNG, ImageFormat.TIFF, ImageFormat.BMP, ImageFormat.GIF}
_LANGUAGE_PATTERN = re.compile(r"^[A-Za-z_]+(\+[A-Za-z_]+)*$")


# --- Grid composite ---


def clamp_quantity(requested: int | None, default: int = 1) -> tuple[int, int]:
    """Clamp a copy count to [1, max_grid_copies].

    Returns (quantity, copies_dropped).
    """
    if requested is None:
        requested = default
    quantity = max(1, min(requested, settings.max_grid_copies))
    return quantity, max(0, requested - quantity)


def grid_composite(
    handle: ImageHandle,
    unit: Image.Image,
    quantity: int,
    background=WHITE,
    layout: GridLayout | None = None,
) -> tuple[Image.Image, GridLayout]:
    """Tile ``quantity`` copies of ``unit`` on one canvas.

    Unfilled cells keep the background color; copies beyond the layout's
    capacity are not placed.
    """
    if layout is None:
        layout = GridLayout.for_quantity(quantity, unit.width, unit.height)
    canvas = handle.new_canvas(layout.canvas_size, tuple(background[:3]))
    for offset in layout.offsets(quantity):
        canvas.paste(unit, offset)
    return canvas, layout


# --- Passport photo ---


def resolve_photo_size(params: TransformParams) -> tuple[float, float, LengthUnit, str]:
    """Physical photo size from ``size`` ("35x45mm", "2x2") or the country preset."""
    size = params.get("size")
    if size:
        match = _SIZE_PATTERN.match(size.lower())
        if match:
            width, height, suffix = match.groups()
            unit = parse_unit(suffix) if suffix else params.unit
            if unit is not None:
                return float(width), float(height), unit, f"{width}x{height}{unit.value}"

    country = params["country"].lower()
    width, height, unit = COUNTRY_PRESETS.get(country, COUNTRY_PRESETS["us"])
    return width, height, unit, f"{width:g}x{height:g}{unit.value}"


def compliance_findings(handle: ImageHandle, surface: Image.Image) -> list[str]:
    """Advisory checks; never fail the request."""
    findings = []
    if handle.width < MIN_SOURCE_PIXELS or handle.height < MIN_SOURCE_PIXELS:
        findings.append("low_resolution")

    gray = ImageOps.grayscale(surface)
    w, h = gray.size
    patch = max(1, min(w, h) // 20)
    corners = [
        (0, 0, patch, patch),
        (w - patch, 0, w, patch),
        (0, h - patch, patch, h),
        (w - patch, h - patch, w, h),
    ]
    level = sum(ImageStat.Stat(gray.crop(box)).mean[0] for box in corners) / len(corners)
    gray.close()
    if level < WHITE_BACKGROUND_LEVEL:
        findings.append("background_not_white")
    return findings


def passport_unit(handle: ImageHandle, params: TransformParams) -> tuple[Image.Image, str]:
    """Crop, resize and enhance one passport photo."""
    width, height, unit, label = resolve_photo_size(params)
    pixel_size = (to_pixels(width, unit, params.dpi), to_pixels(height, unit, params.dpi))

    surface = handle.surface
    if surface.mode != "RGB":
        flat = handle.track(surface.convert("RGBA"))
        base = handle.new_canvas(flat.size, tuple(params["background"][:3]))
        base.paste(flat, mask=flat.getchannel("A"))
        surface = base

    face = handle.track(surface.crop(face_region_box(surface.width, surface.height)))
    photo = handle.track(fit_image(face, pixel_size[0], pixel_size[1], "cover"))
    if params["enhance"]:
        photo = handle.track(ImageOps.autocontrast(photo, cutoff=1))
        photo = handle.track(photo.filter(ImageFilter.UnsharpMask(radius=1, percent=80, threshold=3)))
        photo = handle.track(ImageEnhance.Color(photo).enhance(1.05))
    return photo, label


def passport_photo(handle: ImageHandle, params: TransformParams, default_quantity: int = 1) -> EncodedOutput:
    quantity, dropped = clamp_quantity(params.get("quantity"), default_quantity)
    findings = compliance_findings(handle, handle.surface)
    photo, label = passport_unit(handle, params)

    diagnostics = {
        "photo_size": label,
        "unit_pixels": f"{photo.width}x{photo.height}",
        "quantity": quantity,
        "compliance": ",".join(findings) or "ok",
    }
    if dropped:
        diagnostics["copies_dropped"] = dropped
        logger.info(
            f"Passport grid capped at {quantity} copies",
            extra={"context": {"requested": quantity + dropped, "dropped": dropped}},
        )

    out = photo
    if quantity > 1:
        out, layout = grid_composite(handle, photo, quantity, params["background"])
        diagnostics["grid"] = f"{layout.cols}x{layout.rows}"

    return image_output(
        handle,
        out,
        JPEG,
        output_filename("passport", JPEG, label, f"x{quantity}" if quantity > 1 else None),
        quality=95,
        dpi=params.dpi,
        diagnostics=diagnostics,
    )


def passport_photo_sheet(handle: ImageHandle, params: TransformParams):
    return passport_photo(handle, params, default_quantity=6)


def image_grid(handle: ImageHandle, params: TransformParams):
    rows, cols = params["rows"], params["cols"]
    requested = rows * cols
    quantity, dropped = clamp_quantity(requested)
    if dropped:
        # Keep the column count; trim rows to stay within the copy cap
        rows = max(1, quantity // cols)
        cols = min(cols, quantity)
        quantity = rows * cols
        dropped = requested - quantity

    surface = handle.surface
    cell = params["cellSize"]
    unit_size = scale_to_fit(surface.width, surface.height, cell, cell)
    check_pixel_budget(unit_size[0] * cols, unit_size[1] * rows)
    unit = handle.track(surface.convert("RGB").resize(unit_size, Image.Resampling.LANCZOS))
    layout = GridLayout(cols=cols, rows=rows, unit_width=unit.width, unit_height=unit.height)
    canvas, layout = grid_composite(handle, unit, quantity, params["background"], layout=layout)

    diagnostics = {"grid": f"{cols}x{rows}", "cell": f"{unit.width}x{unit.height}"}
    if dropped:
        diagnostics["copies_dropped"] = dropped
    return image_output(
        handle,
        canvas,
        JPEG,
        output_filename("grid", JPEG, f"{cols}x{rows}"),
        quality=params["quality"],
        diagnostics=diagnostics,
    )


# --- PDF ---


def images_to_pdf(handle: ImageHandle, params: TransformParams) -> EncodedOutput:
    """One page per uploaded image, in upload order."""
    pages = []
    for source in [handle, *handle.siblings]:
        surface = source.surface
        if surface.mode != "RGB":
            flat = source.track(surface.convert("RGBA"))
            page = source.new_canvas(flat.size, WHITE)
            page.paste(flat, mask=flat.getchannel("A"))
            surface = page
        pages.append(surface)

    handle.begin_encoding()
    buf = io.BytesIO()
    try:
        pages[0].save(
            buf,
            format="PDF",
            save_all=True,
            append_images=pages[1:],
            resolution=float(params.dpi),
        )
    except (OSError, ValueError) as exc:
        raise CollaboratorError(
            "PDF generation failed",
            collaborator="pdf",
            detail=str(exc),
        ) from exc

    content = buf.getvalue()
    return EncodedOutput(
        content=content,
        content_type="application/pdf",
        suggested_filename=output_filename("images", "pdf", f"{len(pages)}pages"),
        diagnostics={
            "pages": str(len(pages)),
            "output_size": str(len(content)),
            "dpi": str(params.dpi),
        },
    )


# --- JSON tools ---


def check_dpi(handle: ImageHandle, params: TransformParams) -> JsonOutput:
    declared = handle.dpi
    dpi = declared or 72
    return JsonOutput(
        body={
            "success": True,
            "dpi": dpi,
            "dpi_declared": declared is not None,
            "width": handle.width,
            "height": handle.height,
            "format": handle.format.value,
            "size": len(handle.data),
            "message": f"Image DPI: {dpi}",
        },
        diagnostics={"dpi": str(dpi)},
    )


def pick_color(handle: ImageHandle, params: TransformParams) -> JsonOutput:
    surface = handle.surface
    rgb = surface if surface.mode == "RGB" else handle.track(surface.convert("RGB"))
    x, y = params.get("x"), params.get("y")

    if x is not None and y is not None:
        x = min(x, rgb.width - 1)
        y = min(y, rgb.height - 1)
        color = rgb.getpixel((x, y))[:3]
        mode = "pixel"
    else:
        color = tuple(int(round(c)) for c in ImageStat.Stat(rgb).mean[:3])
        mode = "average"

    hex_color = "#{:02x}{:02x}{:02x}".format(*color)
    body = {
        "success": True,
        "color": {"hex": hex_color, "rgb": list(color)},
        "mode": mode,
    }
    if mode == "pixel":
        body.update({"x": x, "y": y})
    return JsonOutput(body=body, diagnostics={"color": hex_color, "mode": mode})


async def ocr(handle: ImageHandle, params: TransformParams) -> JsonOutput:
    """Extract text with the Tesseract CLI.

    Upload bytes are piped as-is when Tesseract reads the format; other
    formats are re-encoded to PNG first.
    """
    language = params["language"]
    if not _LANGUAGE_PATTERN.match(language):
        language = settings.ocr_default_language

    if handle.format in OCR_NATIVE_FORMATS:
        data = handle.data
    else:
        data = await asyncio.to_thread(lambda: handle.encode(handle.surface, ImageFormat.PNG))

    stdout = await run_collaborator(["tesseract", "stdin", "stdout", "-l", language], data)

    text = stdout.decode("utf-8", errors="replace").strip()
    return JsonOutput(
        body={
            "success": True,
            "text": text,
            "language": language,
            "characters": len(text),
        },
        diagnostics={"language": language, "characters": str(len(text))},
    )


_QUANTITY = ParamSpec("quantity", ParamKind.INT, default=None, min_value=1)
_PASSPORT_PARAMS = (
    dpi_spec(),
    ParamSpec("unit", ParamKind.ENUM, default="in", choices=("mm", "cm", "in")),
    ParamSpec("country", ParamKind.STR, default="US"),
    ParamSpec("size", ParamKind.STR, default=None),
    ParamSpec("background", ParamKind.COLOR, default="white", aliases=("backgroundColor",)),
    ParamSpec("enhance", ParamKind.BOOL, default=True),
    _QUANTITY,
)
_OCR_PARAMS = (
    ParamSpec("language", ParamKind.STR, default=settings.ocr_default_language, aliases=("lang",)),
)


def _document(tool_id: str, apply, *params: ParamSpec, **kwargs) -> ToolRecipe:
    return ToolRecipe(id=tool_id, family=ToolFamily.DOCUMENT, apply=apply, params=params, **kwargs)


RECIPES = [
    _document(
        "passport-photo",
        passport_photo,
        *_PASSPORT_PARAMS,
        description="Passport photo with face-biased crop; quantity > 1 builds a print grid",
    ),
    _document(
        "passport-photo-sheet",
        passport_photo_sheet,
        *_PASSPORT_PARAMS,
        description="Sheet of passport photos (6 by default)",
    ),
    _document(
        "image-grid",
        image_grid,
        ParamSpec("rows", ParamKind.INT, default=2, min_value=1, max_value=settings.max_grid_copies),
        ParamSpec("cols", ParamKind.INT, default=2, min_value=1, max_value=settings.max_grid_copies),
        ParamSpec("cellSize", ParamKind.LENGTH, default=600, unit=LengthUnit.PX),
        ParamSpec("background", ParamKind.COLOR, default="white"),
        ParamSpec("quality", ParamKind.INT, default=90, min_value=1, max_value=100),
        description="Tile the image rows x cols",
    ),
    _document(
        "image-to-pdf",
        images_to_pdf,
        dpi_spec(),
        multi_image=True,
        description="Combine every uploaded image into one PDF, one page each",
    ),
    _document(
        "check-dpi",
        check_dpi,
        output_kind=OutputKind.JSON,
        description="Report declared DPI and dimensions",
    ),
    _document(
        "pick-color",
        pick_color,
        ParamSpec("x", ParamKind.INT, default=None, min_value=0),
        ParamSpec("y", ParamKind.INT, default=None, min_value=0),
        output_kind=OutputKind.JSON,
        description="Sample the color at x/y, or the image average",
    ),
    _document("ocr", ocr, *_OCR_PARAMS, output_kind=OutputKind.JSON, description="Extract text (OCR)"),
    _document("jpg-to-text", ocr, *_OCR_PARAMS, output_kind=OutputKind.JSON, description="Extract text from a JPEG"),
    _document("png-to-text", ocr, *_OCR_PARAMS, output_kind=OutputKind.JSON, description="Extract text from a PNG"),
]

"""Tests for passport photos, grids, PDF assembly and the inspection tools."""

from unittest.mock import AsyncMock, patch

import pytest
from PIL import Image

from exceptions import CollaboratorError, InvalidParameterError
from recipes.document import (
    MIN_SOURCE_PIXELS,
    clamp_quantity,
    compliance_findings,
    resolve_photo_size,
)
from recipes.registry import get_recipe
from tests.helpers import decode, make_image, run_recipe
from utils.geometry import LengthUnit


def _passport_params(**fields):
    return get_recipe("passport-photo").validate(fields)


# --- Photo size resolution ---


def test_default_country_is_us_inches():
    assert resolve_photo_size(_passport_params()) == (2, 2, LengthUnit.INCH, "2x2in")


def test_country_preset():
    assert resolve_photo_size(_passport_params(country="India")) == (35, 35, LengthUnit.MM, "35x35mm")


def test_unknown_country_falls_back_to_us():
    assert resolve_photo_size(_passport_params(country="atlantis"))[2] == LengthUnit.INCH


def test_size_string_with_unit():
    assert resolve_photo_size(_passport_params(size="35x45mm")) == (35.0, 45.0, LengthUnit.MM, "35x45mm")


def test_size_string_uses_unit_param():
    width, height, unit, _ = resolve_photo_size(_passport_params(size="3.5 x 4.5", unit="cm"))
    assert (width, height, unit) == (3.5, 4.5, LengthUnit.CM)


def test_bad_size_string_falls_back_to_country():
    assert resolve_photo_size(_passport_params(size="large", country="china"))[3] == "33x48mm"


# --- Quantity ---


def test_clamp_quantity():
    assert clamp_quantity(None) == (1, 0)
    assert clamp_quantity(None, default=6) == (6, 0)
    assert clamp_quantity(5) == (5, 0)
    assert clamp_quantity(50) == (36, 14)
    assert clamp_quantity(0) == (1, 0)


# --- Compliance ---


def test_compliance_ok(portrait_jpeg):
    result_img = decode(portrait_jpeg)

    class FakeHandle:
        width, height = result_img.size

    assert compliance_findings(FakeHandle(), result_img) == []


def test_compliance_flags_small_dark_photo():
    img = Image.new("RGB", (MIN_SOURCE_PIXELS - 1, 700), (40, 40, 40))

    class FakeHandle:
        width, height = img.size

    assert compliance_findings(FakeHandle(), img) == ["low_resolution", "background_not_white"]


# --- Passport recipes ---


@pytest.mark.asyncio
async def test_passport_single_photo(portrait_jpeg):
    result = await run_recipe("passport-photo", portrait_jpeg, country="uk")
    output = result.output
    img = decode(output.content)
    assert img.size == (413, 531)
    assert round(img.info["dpi"][0]) == 300
    assert output.diagnostics["photo_size"] == "35x45mm"
    assert output.diagnostics["compliance"] == "ok"
    assert output.suggested_filename.startswith("passport_35x45mm_")
    result.release()


@pytest.mark.asyncio
async def test_passport_reports_low_resolution(sample_jpeg):
    result = await run_recipe("passport-photo", sample_jpeg)
    assert "low_resolution" in result.output.diagnostics["compliance"]
    result.release()


@pytest.mark.asyncio
async def test_passport_sheet_defaults_to_six(portrait_jpeg):
    result = await run_recipe("passport-photo-sheet", portrait_jpeg, dpi=100)
    output = result.output
    assert output.diagnostics["quantity"] == "6"
    assert output.diagnostics["grid"] == "3x2"
    assert decode(output.content).size == (600, 400)
    result.release()


@pytest.mark.asyncio
async def test_passport_transparent_source_uses_background(rgba_png):
    result = await run_recipe("passport-photo", rgba_png, backgroundColor="blue", enhance="false", dpi=50)
    img = decode(result.output.content)
    assert img.getpixel((50, 50)) == pytest.approx((0, 0, 255), abs=12)
    result.release()


# --- Grid ---


@pytest.mark.asyncio
async def test_image_grid(sample_png):
    result = await run_recipe("image-grid", sample_png, rows=2, cols=3, cellSize=32)
    img = decode(result.output.content)
    assert img.size == (96, 48)
    assert result.output.diagnostics["grid"] == "3x2"
    assert result.output.diagnostics["cell"] == "32x24"
    result.release()


@pytest.mark.asyncio
async def test_image_grid_refuses_oversized_canvas(sample_png):
    with pytest.raises(InvalidParameterError) as exc_info:
        await run_recipe("image-grid", sample_png, rows=6, cols=6, cellSize=20000)
    assert exc_info.value.details["parameter"] == "dimensions"


# --- PDF ---


@pytest.mark.asyncio
async def test_single_image_pdf(rgba_png):
    result = await run_recipe("image-to-pdf", rgba_png)
    assert result.output.content.startswith(b"%PDF")
    assert result.output.diagnostics["pages"] == "1"
    assert result.output.suggested_filename.endswith(".pdf")
    result.release()


# --- JSON tools ---


@pytest.mark.asyncio
async def test_check_dpi_undeclared(sample_png):
    result = await run_recipe("check-dpi", sample_png)
    body = result.output.body
    assert body["dpi"] == 72
    assert body["dpi_declared"] is False
    assert (body["width"], body["height"]) == (64, 48)
    assert body["format"] == "png"
    assert body["size"] == len(sample_png)
    result.release()


@pytest.mark.asyncio
async def test_check_dpi_declared():
    data = make_image("PNG", dpi=(300, 300))
    result = await run_recipe("check-dpi", data)
    assert result.output.body["dpi"] == 300
    assert result.output.body["message"] == "Image DPI: 300"
    result.release()


@pytest.mark.asyncio
async def test_pick_color_average(sample_png):
    result = await run_recipe("pick-color", sample_png)
    body = result.output.body
    assert body["mode"] == "average"
    assert body["color"] == {"hex": "#c87828", "rgb": [200, 120, 40]}
    result.release()


@pytest.mark.asyncio
async def test_pick_color_pixel_is_clamped(sample_png):
    result = await run_recipe("pick-color", sample_png, x=500, y=500)
    body = result.output.body
    assert body["mode"] == "pixel"
    assert (body["x"], body["y"]) == (63, 47)
    result.release()


# --- OCR ---


@pytest.mark.asyncio
async def test_ocr_pipes_native_bytes(sample_png):
    run = AsyncMock(return_value=b"  Hello world \n")
    with patch("recipes.document.run_collaborator", new=run):
        result = await run_recipe("ocr", sample_png, language="deu")
    cmd, data = run.await_args.args
    assert cmd == ["tesseract", "stdin", "stdout", "-l", "deu"]
    assert data == sample_png
    assert result.output.body == {
        "success": True,
        "text": "Hello world",
        "language": "deu",
        "characters": 11,
    }
    result.release()


@pytest.mark.asyncio
async def test_ocr_reencodes_webp_to_png(sample_webp):
    run = AsyncMock(return_value=b"")
    with patch("recipes.document.run_collaborator", new=run):
        result = await run_recipe("jpg-to-text", sample_webp)
    _, data = run.await_args.args
    assert data.startswith(b"\x89PNG")
    result.release()


@pytest.mark.asyncio
async def test_ocr_rejects_unsafe_language(sample_png):
    run = AsyncMock(return_value=b"")
    with patch("recipes.document.run_collaborator", new=run):
        result = await run_recipe("ocr", sample_png, lang="eng; rm -rf /")
    cmd, _ = run.await_args.args
    assert cmd[-1] == "eng"
    result.release()


@pytest.mark.asyncio
async def test_ocr_missing_engine(sample_png):
    missing = AsyncMock(side_effect=FileNotFoundError("tesseract"))
    with patch("utils.subprocess_runner.asyncio.create_subprocess_exec", new=missing):
        with pytest.raises(CollaboratorError) as exc_info:
            await run_recipe("ocr", sample_png)
    assert exc_info.value.status_code == 502
    assert exc_info.value.details["collaborator"] == "tesseract"

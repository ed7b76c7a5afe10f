"""Tests for resize recipes and presets."""

import pytest
from PIL import Image

from exceptions import InvalidParameterError
from recipes.resize import fit_image, pad_to_box
from tests.helpers import decode, run_recipe


def test_fit_modes():
    img = Image.new("RGB", (200, 100), "red")
    assert fit_image(img, 50, 50, "cover").size == (50, 50)
    assert fit_image(img, 50, 50, "contain").size == (50, 50)
    assert fit_image(img, 50, 50, "inside").size == (50, 25)
    assert fit_image(img, 50, 50, "fill").size == (50, 50)


def test_pad_to_box_centers():
    img = Image.new("RGB", (10, 10), "black")
    padded = pad_to_box(img, 30, 10, (255, 255, 255))
    assert padded.getpixel((0, 5)) == (255, 255, 255)
    assert padded.getpixel((15, 5)) == (0, 0, 0)



def test_fit_refuses_output_over_pixel_limit():
    img = Image.new("RGB", (20, 10))
    with pytest.raises(InvalidParameterError) as exc_info:
        fit_image(img, 60000, 60000, "fill")
    assert exc_info.value.details == {"parameter": "dimensions", "width": 60000, "height": 60000}

@pytest.mark.asyncio
async def test_resize_pixel_keeps_aspect(sample_png):
    result = await run_recipe("resize-pixel", sample_png, width=32, height=32)
    img = decode(result.output.content)
    assert img.size == (32, 24)
    assert img.format == "PNG"
    result.release()


@pytest.mark.asyncio
async def test_resize_pixel_stretch(sample_png):
    result = await run_recipe("resize-pixel", sample_png, width=32, height=32, maintainAspectRatio="false")
    assert decode(result.output.content).size == (32, 32)
    result.release()


@pytest.mark.asyncio
async def test_resize_mm_at_dpi(sample_jpeg):
    result = await run_recipe("resize-mm", sample_jpeg, width=25.4, height=50.8, dpi=100)
    img = decode(result.output.content)
    assert img.size == (100, 200)
    assert round(img.info["dpi"][0]) == 100
    assert result.output.diagnostics["unit"] == "mm"
    result.release()


@pytest.mark.asyncio
async def test_resize_inches_default_dpi(sample_jpeg):
    result = await run_recipe("resize-inches", sample_jpeg, width=1, height=0.5)
    assert decode(result.output.content).size == (300, 150)
    assert result.output.suggested_filename.startswith("resized_1x0.5in_")
    result.release()


@pytest.mark.asyncio
async def test_generic_resize_with_unit(sample_png):
    result = await run_recipe("resize", sample_png, width=2.54, height=2.54, unit="cm", dpi=50)
    assert decode(result.output.content).size == (50, 50)
    result.release()


@pytest.mark.asyncio
async def test_resize_contain_pads_with_background(sample_png):
    result = await run_recipe(
        "resize", sample_png, width=100, height=100, fit="contain", background="black"
    )
    img = decode(result.output.content)
    assert img.size == (100, 100)
    assert img.getpixel((50, 2)) == pytest.approx((0, 0, 0), abs=8)
    result.release()


@pytest.mark.parametrize(
    "tool_id, size",
    [
        ("resize-whatsapp", (500, 500)),
        ("resize-instagram", (1080, 1080)),
        ("resize-youtube-banner", (2560, 1440)),
        ("resize-ssc", (300, 300)),
        ("resize-pan-card", (300, 360)),
        ("resize-upsc", (300, 400)),
        ("resize-35mm-45mm", (413, 531)),
        ("resize-2x2-inch", (600, 600)),
        ("resize-6cm-2cm", (709, 236)),
    ],
)
@pytest.mark.asyncio
async def test_presets(tool_id, size, sample_jpeg):
    result = await run_recipe(tool_id, sample_jpeg)
    assert decode(result.output.content).size == size
    assert result.output.content_type == "image/jpeg"
    result.release()


@pytest.mark.asyncio
async def test_a4_preset_follows_dpi(sample_jpeg):
    result = await run_recipe("resize-a4", sample_jpeg, dpi=100)
    img = decode(result.output.content)
    assert img.size == (827, 1169)
    assert round(img.info["dpi"][0]) == 100
    result.release()


@pytest.mark.asyncio
async def test_signature_box_is_transparent_png(sample_png):
    result = await run_recipe("resize-signature", sample_png)
    img = decode(result.output.content)
    assert result.output.content_type == "image/png"
    assert img.size == (200, 50)
    assert img.mode == "RGBA"
    assert img.getpixel((0, 25))[3] == 0
    result.release()


@pytest.mark.asyncio
async def test_oversized_resize_is_rejected(sample_png):
    with pytest.raises(InvalidParameterError) as exc_info:
        await run_recipe("resize-pixel", sample_png, width=60000, height=60000, maintainAspectRatio="false")
    assert exc_info.value.status_code == 400

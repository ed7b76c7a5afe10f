import pytest
from fastapi.testclient import TestClient
from PIL import Image

from main import app
from tests.helpers import make_image, make_noisy_image, to_bytes


@pytest.fixture
def client():
    """FastAPI test client (does not raise server exceptions)."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def strict_client():
    """FastAPI test client that raises server exceptions."""
    return TestClient(app, raise_server_exceptions=True)


@pytest.fixture
def sample_png():
    return make_image("PNG")


@pytest.fixture
def sample_jpeg():
    return make_image("JPEG", size=(120, 90), quality=90)


@pytest.fixture
def sample_webp():
    return make_image("WEBP", quality=80)


@pytest.fixture
def sample_gif():
    return make_image("GIF", mode="P", color=3)


@pytest.fixture
def sample_bmp():
    return make_image("BMP")


@pytest.fixture
def sample_tiff():
    return make_image("TIFF")


@pytest.fixture
def rgba_png():
    return make_image("PNG", mode="RGBA", color=(10, 20, 30, 0))


@pytest.fixture
def portrait_jpeg():
    """Tall photo on a white backdrop, large enough to pass the resolution check."""
    img = Image.new("RGB", (800, 1000), (255, 255, 255))
    img.paste((90, 60, 50), (250, 200, 550, 600))
    return to_bytes(img, "JPEG", quality=92, dpi=(72, 72))


@pytest.fixture
def noisy_jpeg():
    return to_bytes(make_noisy_image(), "JPEG", quality=95)

import io
import random

from PIL import Image


def make_image(fmt="PNG", size=(64, 48), color=(200, 120, 40), mode="RGB", **save_kwargs) -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def make_noisy_image(size=(400, 300), seed=7) -> Image.Image:
    """RGB image with per-pixel noise so lossy encoders have work to do."""
    rng = random.Random(seed)
    img = Image.new("RGB", size)
    img.putdata(
        [(rng.randrange(256), rng.randrange(256), rng.randrange(256)) for _ in range(size[0] * size[1])]
    )
    return img


def to_bytes(img: Image.Image, fmt="JPEG", **save_kwargs) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


async def run_recipe(tool_id: str, *images: bytes, **fields):
    """Dispatch one tool on a private lifecycle manager; returns the DispatchResult."""
    from config import CodecConfig
    from recipes.dispatcher import Upload, dispatch
    from utils.lifecycle import LifecycleManager

    manager = LifecycleManager(CodecConfig())
    uploads = [Upload(data) for data in images]
    return await dispatch(tool_id, uploads, {k: str(v) for k, v in fields.items()}, manager=manager)


def decode(content: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(content))
    img.load()
    return img

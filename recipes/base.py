import inspect
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from PIL import Image

from schemas import EncodedOutput, JsonOutput
from utils.format_detect import EXTENSIONS, MIME_TYPES, ImageFormat
from utils.image_handle import ImageHandle
from utils.params import ParamSpec, TransformParams, validate_params

RecipeOutput = Union[EncodedOutput, JsonOutput]
RecipeFn = Callable[[ImageHandle, TransformParams], Union[RecipeOutput, Awaitable[RecipeOutput]]]


class OutputKind(str, Enum):
    IMAGE = "image"
    JSON = "json"


class ToolFamily(str, Enum):
    RESIZE = "resize"
    COMPRESS = "compress"
    CONVERT = "convert"
    EFFECTS = "effects"
    DOCUMENT = "document"


@dataclass(frozen=True)
class ToolRecipe:
    """A named, stateless transform registered once at process start.

    ``apply`` receives the request's single decoded image and validated
    parameters and returns either encoded image bytes or a JSON body,
    as declared by ``output_kind``. Coroutine functions are awaited on
    the event loop; plain functions run in a worker thread.
    """

    id: str
    family: ToolFamily
    apply: RecipeFn
    params: tuple[ParamSpec, ...] = ()
    output_kind: OutputKind = OutputKind.IMAGE
    multi_image: bool = False
    description: str = ""

    def validate(self, raw: Mapping[str, Any], default_dpi: int = 300) -> TransformParams:
        return validate_params(self.params, raw, default_dpi=default_dpi)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.apply)


def output_filename(prefix: str, fmt: ImageFormat | str, *parts) -> str:
    """``<prefix>_<parts...>_<epoch-ms>.<ext>``"""
    ext = EXTENSIONS[fmt] if isinstance(fmt, ImageFormat) else fmt
    stem = "_".join([prefix, *(str(p) for p in parts if p not in (None, ""))])
    return f"{stem}_{int(time.time() * 1000)}.{ext}"


def image_output(
    handle: ImageHandle,
    img: Image.Image,
    fmt: ImageFormat,
    filename: str,
    quality: int | None = 90,
    dpi: int | None = None,
    background=(255, 255, 255),
    diagnostics: dict | None = None,
    **save_kwargs,
) -> EncodedOutput:
    """Encode a finished buffer and wrap it with response metadata."""
    content = handle.encode(
        img, fmt, quality=quality, dpi=dpi, background=background, **save_kwargs
    )
    diag = {
        "original_size": str(len(handle.data)),
        "output_size": str(len(content)),
        "dimensions": f"{img.width}x{img.height}",
    }
    if diagnostics:
        diag.update({k: str(v) for k, v in diagnostics.items()})
    return EncodedOutput(
        content=content,
        content_type=MIME_TYPES[fmt],
        suggested_filename=filename,
        diagnostics=diag,
    )

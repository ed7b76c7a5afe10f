import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from config import settings
from exceptions import CodecFailureError, ToolError
from recipes.base import RecipeOutput, ToolRecipe
from recipes.registry import REGISTRY, RecipeRegistry
from security.file_validation import validate_file, validate_upload_count
from utils.image_handle import ImageHandle
from utils.lifecycle import LifecycleManager, RequestScope, RequestState, lifecycle
from utils.logging import get_logger, request_extra

logger = get_logger("dispatcher")


@dataclass
class Upload:
    """One multipart image part, already read into memory."""

    data: bytes
    filename: str | None = None


@dataclass
class DispatchResult:
    recipe: ToolRecipe
    output: RecipeOutput
    scope: RequestScope

    def release(self) -> None:
        """Drop the encoded output once the response has been written."""
        self.scope.release()


async def dispatch(
    tool_id: str,
    uploads: list[Upload],
    fields: Mapping[str, Any],
    request_id: str = "",
    manager: LifecycleManager | None = None,
    registry: RecipeRegistry | None = None,
) -> DispatchResult:
    """Resolve a tool, validate its inputs, and run it under the codec gate.

    The tool id is checked before anything else, so an unknown tool costs
    no decode. Every buffer the request allocates is released on every
    path; on success the caller releases the output via
    ``DispatchResult.release`` after sending it.

    Raises:
        ToolError: Any typed failure. Unexpected exceptions from the codec
            library are wrapped in CodecFailureError.
    """
    manager = manager or lifecycle
    recipe = (registry or REGISTRY).get(tool_id)

    validate_upload_count(len(uploads))
    if not recipe.multi_image:
        uploads = uploads[:1]
    for upload in uploads:
        validate_file(upload.data, upload.filename)

    params = recipe.validate(fields, default_dpi=settings.default_dpi)

    scope = manager.open_scope(tool_id, request_id)
    started = time.monotonic()
    try:
        handle = ImageHandle.open(uploads[0].data, scope, uploads[0].filename)
        handle.siblings = [ImageHandle(u.data, scope, u.filename) for u in uploads[1:]]

        async with manager.codec_slot(scope):
            output = await _apply(recipe, handle, params)

        scope.transition(RequestState.RESPONDING)
        scope.attach_output(output)
    except asyncio.CancelledError:
        scope.release()
        logger.info(f"{tool_id} cancelled", extra=request_extra(request_id, tool_id))
        raise
    except ToolError as exc:
        scope.release()
        logger.warning(
            f"{tool_id} failed: {exc.message}",
            extra=request_extra(request_id, tool_id, error=exc.error_code),
        )
        raise
    except Exception as exc:
        scope.release()
        logger.error(
            f"{tool_id} raised {type(exc).__name__}",
            extra=request_extra(request_id, tool_id),
            exc_info=True,
        )
        raise CodecFailureError(
            "Image processing failed",
            tool=tool_id,
            detail=f"{type(exc).__name__}: {exc}",
        ) from exc

    logger.info(
        f"{tool_id} completed",
        extra=request_extra(
            request_id,
            tool_id,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            inputs=len(uploads),
        ),
    )
    return DispatchResult(recipe=recipe, output=output, scope=scope)


async def _apply(recipe: ToolRecipe, handle: ImageHandle, params) -> RecipeOutput:
    """Run the recipe and keep the caller inside the gate until it finishes.

    A worker thread cannot be interrupted, so a cancelled request waits for
    its transform to return before the gate and the surfaces are released.
    """
    if recipe.is_async:
        work = asyncio.ensure_future(recipe.apply(handle, params))
    else:
        # CPU-bound Pillow work runs off the event loop
        work = asyncio.ensure_future(asyncio.to_thread(recipe.apply, handle, params))
    try:
        return await asyncio.shield(work)
    except asyncio.CancelledError:
        await asyncio.wait([work])
        raise

import asyncio
import gc
from contextlib import asynccontextmanager
from enum import Enum

from PIL import Image, ImageFile

from config import CodecConfig, Settings, settings
from utils.concurrency import CodecGate
from utils.logging import get_logger

logger = get_logger("lifecycle")


class RequestState(str, Enum):
    RECEIVED = "received"
    DECODING = "decoding"
    TRANSFORMING = "transforming"
    ENCODING = "encoding"
    RESPONDING = "responding"
    RELEASED = "released"


# RELEASED is reachable from every state (cleanup always runs)
_TRANSITIONS = {
    RequestState.RECEIVED: {RequestState.DECODING},
    RequestState.DECODING: {RequestState.TRANSFORMING},
    RequestState.TRANSFORMING: {
        RequestState.TRANSFORMING,
        RequestState.ENCODING,
        RequestState.RESPONDING,
    },
    RequestState.ENCODING: {
        RequestState.ENCODING,
        RequestState.TRANSFORMING,
        RequestState.RESPONDING,
    },
    RequestState.RESPONDING: set(),
    RequestState.RELEASED: set(),
}

# States allowed to hold the codec gate
LOCKED_STATES = {RequestState.TRANSFORMING, RequestState.ENCODING}


class RequestScope:
    """Per-request ownership of every large buffer (decoded surfaces, canvases).

    Buffers are registered with ``track`` and closed by ``release_surfaces``
    when the request leaves the codec gate. ``release`` additionally drops
    the encoded output once the response has been written.
    """

    def __init__(self, tool_id: str, request_id: str = ""):
        self.tool_id = tool_id
        self.request_id = request_id
        self.state = RequestState.RECEIVED
        self.history: list[RequestState] = [RequestState.RECEIVED]
        self.holds_gate = False
        self._buffers: list[Image.Image] = []
        self._output: object | None = None

    def transition(self, new_state: RequestState) -> None:
        if new_state == self.state and new_state in (
            RequestState.TRANSFORMING,
            RequestState.ENCODING,
        ):
            return
        if new_state != RequestState.RELEASED and new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal request state transition {self.state.value} -> {new_state.value}"
            )
        if new_state in LOCKED_STATES and not self.holds_gate:
            raise RuntimeError(f"State {new_state.value} requires the codec gate")
        logger.debug(
            f"{self.tool_id}: {self.state.value} -> {new_state.value}",
            extra={"request_id": self.request_id, "tool": self.tool_id, "state": new_state.value},
        )
        self.state = new_state
        self.history.append(new_state)

    def track(self, img: Image.Image) -> Image.Image:
        """Register a buffer owned by this request and return it."""
        if not any(img is b for b in self._buffers):
            self._buffers.append(img)
        return img

    def attach_output(self, output: object) -> None:
        self._output = output

    @property
    def live_buffers(self) -> int:
        return len(self._buffers)

    def release_surfaces(self) -> None:
        """Close every tracked buffer. Safe to call more than once."""
        buffers, self._buffers = self._buffers, []
        for img in buffers:
            try:
                img.close()
            except (OSError, ValueError) as exc:
                logger.warning(
                    f"Failed to close buffer for {self.tool_id}: {exc}",
                    extra={"request_id": self.request_id, "tool": self.tool_id},
                )

    def release(self) -> None:
        """Final cleanup: surfaces and encoded output. Idempotent."""
        self.release_surfaces()
        self._output = None
        if self.state != RequestState.RELEASED:
            self.transition(RequestState.RELEASED)


class LifecycleManager:
    """Owns the codec gate, the codec configuration, and the memory sweep.

    One instance per process, created at import and started in the app
    lifespan.
    """

    def __init__(self, codec_config: CodecConfig, sweep_interval: int = 0):
        self.codec_config = codec_config
        self.gate = CodecGate()
        self.sweep_interval = sweep_interval
        self._sweep_task: asyncio.Task | None = None
        self._configured = False
        self.sweeps = 0

    @classmethod
    def from_settings(cls, s: Settings) -> "LifecycleManager":
        return cls(
            codec_config=CodecConfig.from_settings(s),
            sweep_interval=s.gc_sweep_interval_seconds,
        )

    def apply_codec_config(self) -> None:
        """Push the immutable codec settings into Pillow exactly once."""
        if self._configured:
            return
        Image.MAX_IMAGE_PIXELS = self.codec_config.max_image_pixels
        ImageFile.LOAD_TRUNCATED_IMAGES = self.codec_config.load_truncated_images
        if not self.codec_config.cache_enabled:
            Image.core.set_blocks_max(0)

        import pillow_heif

        pillow_heif.register_heif_opener()
        self._configured = True

    def open_scope(self, tool_id: str, request_id: str = "") -> RequestScope:
        self.apply_codec_config()
        return RequestScope(tool_id, request_id)

    @asynccontextmanager
    async def codec_slot(self, scope: RequestScope):
        """Hold the process-wide gate for the transform/encode phase.

        Surfaces are released before the gate is handed to the next request.
        """
        await self.gate.acquire()
        scope.holds_gate = True
        try:
            scope.transition(RequestState.TRANSFORMING)
            yield scope
        finally:
            scope.release_surfaces()
            scope.holds_gate = False
            self.gate.release()

    # --- Periodic sweep ---

    def sweep(self) -> int:
        """Ask the runtime to collect garbage; returns the number of objects found."""
        collected = gc.collect()
        self.sweeps += 1
        logger.info(
            "Memory sweep completed",
            extra={"context": {"collected": collected, "sweeps": self.sweeps}},
        )
        return collected

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            # Never collect while a transform is mid-flight
            async with self.gate.slot():
                self.sweep()

    def start(self) -> None:
        self.apply_codec_config()
        if self.sweep_interval > 0 and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None


# Module-level singleton
lifecycle = LifecycleManager.from_settings(settings)

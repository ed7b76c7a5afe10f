import importlib.util
import shutil

from fastapi import APIRouter

from recipes.registry import REGISTRY
from schemas import HealthResponse
from utils.lifecycle import lifecycle

router = APIRouter()

VERSION = "0.1.0"

# CLI collaborators looked up on PATH
REQUIRED_BINARIES = {
    "tesseract": "tesseract",
}

# Python collaborators, by import name
REQUIRED_MODULES = {
    "pillow": "PIL",
    "pillow_heif": "pillow_heif",
    "oxipng": "oxipng",
}


def check_collaborators() -> dict[str, bool]:
    """Availability of every external codec, OCR and optimizer dependency."""
    results = {name: shutil.which(binary) is not None for name, binary in REQUIRED_BINARIES.items()}
    for name, module in REQUIRED_MODULES.items():
        results[name] = importlib.util.find_spec(module) is not None
    return results


@router.get("/health", response_model=HealthResponse)
async def health():
    collaborators = check_collaborators()
    return HealthResponse(
        status="ok" if all(collaborators.values()) else "degraded",
        collaborators=collaborators,
        codec_gate=lifecycle.gate.snapshot(),
        tool_count=len(REGISTRY),
        version=VERSION,
    )

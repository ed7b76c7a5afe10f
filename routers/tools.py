import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from starlette.background import BackgroundTask
from starlette.datastructures import UploadFile
from starlette.formparsers import MultiPartException

from exceptions import BadRequestError
from recipes.dispatcher import Upload, dispatch
from recipes.registry import REGISTRY
from schemas import EncodedOutput, ToolListResponse

router = APIRouter()

RETENTION_NOTICE = "processed in memory - no storage"


@router.get("/tools", response_model=ToolListResponse)
async def list_tools():
    return ToolListResponse(
        tools=REGISTRY.ids(),
        total_count=len(REGISTRY),
        families=REGISTRY.families(),
    )


@router.post("/tools/{tool_id}")
async def run_tool_endpoint(tool_id: str, request: Request):
    """Run one tool on the uploaded image(s).

    Multipart body: any number of file parts (field name is not
    significant) plus form fields for the tool's parameters.

    Two response modes, chosen by the tool:
    1. Image/document tools -> raw bytes with Content-Disposition
    2. Inspection tools (OCR, DPI, color) -> JSON body

    Diagnostics travel in the X-Tool-Diagnostics header as JSON.
    """
    try:
        form = await request.form()
    except MultiPartException as exc:
        raise BadRequestError(f"Invalid multipart body: {exc.message}") from exc

    uploads: list[Upload] = []
    fields: dict[str, str] = {}
    try:
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                uploads.append(Upload(data=await value.read(), filename=value.filename))
            else:
                fields.setdefault(key, value)
    finally:
        await form.close()

    request_id = getattr(request.state, "request_id", "")
    result = await dispatch(tool_id, uploads, fields, request_id=request_id)

    output = result.output
    headers = {
        "X-Tool-Diagnostics": json.dumps(output.diagnostics),
        "X-File-Retention": RETENTION_NOTICE,
    }
    cleanup = BackgroundTask(result.release)

    if isinstance(output, EncodedOutput):
        headers["Content-Disposition"] = f'attachment; filename="{output.suggested_filename}"'
        return Response(
            content=output.content,
            media_type=output.content_type,
            headers=headers,
            background=cleanup,
        )

    return JSONResponse(content=output.body, headers=headers, background=cleanup)

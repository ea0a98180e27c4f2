"""
Design render API routes: redesign generation, inspiration renders,
prompt preview and job status
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from render_api.core.errors import RenderError
from render_api.dependencies import ServiceContainer, get_orchestrator, get_services
from render_api.middleware.logging_middleware import bind_client_id
from render_api.schemas.render import (
    ErrorResponse,
    GenerationRequest,
    GenerationResponse,
    InspireRequest,
    JobStatusResponse,
    PromptPreviewResponse,
)
from render_api.services.content_store import clean_path, guess_content_type
from render_api.services.generation_orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/design", tags=["design"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


def error_response(error: RenderError) -> JSONResponse:
    return JSONResponse(status_code=error.http_status, content=error.to_payload())


@router.post("/generate", response_model=GenerationResponse, responses={202: {"model": GenerationResponse}, **ERROR_RESPONSES})
async def generate_design(
    payload: GenerationRequest,
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Generate a redesign render from a room photo and design intake"""
    bind_client_id(payload.client_id or "")
    try:
        result = await orchestrator.generate(payload, is_disconnected=request.is_disconnected)
    except RenderError as e:
        logger.warning(f"Design generation failed: {e.error_code} {e.message}")
        return error_response(e)

    if result.status == "in_progress":
        return JSONResponse(status_code=202, content=result.model_dump())
    return result


@router.post("/inspire", response_model=GenerationResponse, responses=ERROR_RESPONSES)
async def inspire_design(payload: InspireRequest, orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    """Text-to-image inspiration render for a design intake"""
    try:
        return await orchestrator.inspire(payload)
    except RenderError as e:
        logger.warning(f"Inspiration render failed: {e.error_code} {e.message}")
        return error_response(e)


@router.post("/prompt", response_model=PromptPreviewResponse, responses={400: {"model": ErrorResponse}})
async def preview_prompt(payload: GenerationRequest, orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    """Show the prompt and parameters a generate call would use, without calling upstream"""
    try:
        return orchestrator.preview_prompt(payload)
    except RenderError as e:
        return error_response(e)


@router.get("/jobs/{client_id}/{job_id}", response_model=JobStatusResponse)
async def get_job(client_id: str, job_id: str, services: ServiceContainer = Depends(get_services)):
    """Current record for a (client_id, job_id) pair"""
    record = await services.jobs.get(client_id, job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(**record.to_dict())


@router.get("/files/{path:path}")
async def get_file(path: str, services: ServiceContainer = Depends(get_services)):
    """Serve stored results for stores without their own static mount"""
    try:
        path = clean_path(path)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid path")
    if not path.startswith("results/"):
        raise HTTPException(status_code=404, detail="File not found")
    data = await services.store.get(path)
    if data is None:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=data, media_type=guess_content_type(path))

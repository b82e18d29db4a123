"""
Processing Router

Accepts screenshot uploads and runs them through the processing pipeline.
Pipeline failures are returned inside the PipelineOutcome, not as HTTP errors.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel, ValidationError

from screencoder.core.config import get_settings
from screencoder.services.imaging import encode_screenshot
from screencoder.services.llm.models import (
    PipelineOutcome,
    PipelineState,
    ProblemInfo,
    ProgressEvent,
    ScreenshotData,
)
from screencoder.services.llm.orchestrator import ProcessingPipeline, get_pipeline

router = APIRouter()
settings = get_settings()


class CancelResponse(BaseModel):
    cancelled: bool


class StatusResponse(BaseModel):
    state: PipelineState
    provider_id: str
    running: bool
    progress: list[ProgressEvent]


async def read_screenshots(screenshots: list[UploadFile] | None) -> list[ScreenshotData]:
    """Validate uploads and turn them into preprocessed, base64-encoded screenshots."""
    screenshots = screenshots or []
    if len(screenshots) > settings.max_screenshots:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many screenshots. Maximum is {settings.max_screenshots}",
        )

    images = []
    for index, upload in enumerate(screenshots):
        if not upload.content_type or not upload.content_type.startswith("image/"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid file type. Please upload an image.",
            )

        data = await upload.read()
        if len(data) > settings.max_upload_size:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Image too large. Maximum size is {settings.max_upload_size // (1024*1024)}MB",
            )

        images.append(encode_screenshot(upload.filename or f"screenshot-{index}.png", data))
    return images


@router.post("", response_model=PipelineOutcome)
async def process_screenshots(
    screenshots: list[UploadFile] | None = File(None),
    pipeline: ProcessingPipeline = Depends(get_pipeline),
):
    """Extract the problem from the screenshots and generate a solution."""
    images = await read_screenshots(screenshots)
    return await pipeline.process_screenshots(images)


@router.post("/debug", response_model=PipelineOutcome)
async def debug_solution(
    current_code: str = Form(...),
    problem: str = Form("{}"),
    screenshots: list[UploadFile] | None = File(None),
    pipeline: ProcessingPipeline = Depends(get_pipeline),
):
    """Debug the current solution against screenshots of the failing run."""
    try:
        problem_info = ProblemInfo.model_validate_json(problem)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid problem JSON: {e.errors()[0]['msg']}",
        )

    images = await read_screenshots(screenshots)
    return await pipeline.debug_solution(images, problem_info, current_code)


@router.post("/cancel", response_model=CancelResponse)
async def cancel_processing(pipeline: ProcessingPipeline = Depends(get_pipeline)):
    """Cancel the in-flight run, if any."""
    return CancelResponse(cancelled=pipeline.cancel())


@router.get("/status", response_model=StatusResponse)
async def processing_status(pipeline: ProcessingPipeline = Depends(get_pipeline)):
    return StatusResponse(
        state=pipeline.state,
        provider_id=pipeline.config.provider_id,
        running=pipeline.is_running,
        progress=list(pipeline.recent_progress),
    )

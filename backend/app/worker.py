"""Celery worker for async drill video processing."""

import os
import uuid
import logging
from pathlib import Path
from typing import Optional

from celery import Celery

from app.config import get_settings
from app.cv.drill_analyzer import DrillAnalyzer
from app.cv.errors import RenderError
from app.cv.loop_renderer import JpegStillEncoder, LoopRenderer
from app.cv.video_source import OpenCVVideoSource
from app.schemas.analysis import DrillAnalysisResponse, DrillProcessingResponse

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".mp4", ".mov", ".webm", ".avi", ".mkv"}

# Create Celery app
celery_app = Celery(
    "drill_loop_analyzer",
    broker=settings.redis_url,
    backend=settings.redis_url
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # Outer guard around the analysis and render deadlines
    worker_prefetch_multiplier=1,  # Process one task at a time
)


def validate_video_file(filename: str, file_size: int) -> None:
    """Validate video file extension and size."""
    ext = os.path.splitext(filename)[1].lower()

    if ext not in ALLOWED_EXTENSIONS:
        raise ValueError(f"Invalid file type. Allowed: {sorted(ALLOWED_EXTENSIONS)}")

    max_size = settings.max_video_size_mb * 1024 * 1024
    if file_size > max_size:
        raise ValueError(f"File too large. Maximum size: {settings.max_video_size_mb}MB")


def process_drill_video(video_path: str, output_dir: Optional[str] = None) -> dict:
    """
    Analyze a drill video and render its loop.

    Steps:
    1. Analyze the video (repetitions, loop bounds, confidence)
    2. Render the loop three times over plus a thumbnail
    3. Write both next to each other in output_dir

    A render failure leaves the analysis intact and marks the drill for
    manual loop selection. An analysis timeout propagates.
    """
    logger.info(f"Starting drill processing for {video_path}")

    if not os.path.exists(video_path):
        raise FileNotFoundError(f"Video file not found: {video_path}")
    validate_video_file(video_path, os.path.getsize(video_path))

    try:
        analyzer = DrillAnalyzer(settings=settings)
        result = analyzer.analyze_file(video_path)
    except Exception as e:
        logger.exception(f"Error analyzing drill video {video_path}: {e}")
        raise

    analysis = DrillAnalysisResponse.from_result(result)
    loop = result.loop_spec
    if loop is None:
        logger.warning(f"No loop available for {video_path}, marking for manual selection")
        return DrillProcessingResponse(
            analysis=analysis, status="manual", error="No loop could be selected"
        ).model_dump(by_alias=True)

    renderer = LoopRenderer.from_settings(settings)
    try:
        with OpenCVVideoSource(video_path) as source:
            rendered = renderer.render(
                source, loop, still_encoder=JpegStillEncoder(settings.thumbnail_jpeg_quality)
            )
    except RenderError as e:
        logger.warning(f"Loop render failed for {video_path}, marking for manual selection: {e}")
        return DrillProcessingResponse(
            analysis=analysis, status="manual", error=str(e)
        ).model_dump(by_alias=True)

    output = Path(output_dir or settings.upload_dir)
    output.mkdir(parents=True, exist_ok=True)
    stem = f"{Path(video_path).stem}_{uuid.uuid4().hex[:8]}"
    loop_path = output / f"{stem}_loop.mp4"
    thumbnail_path = output / f"{stem}_thumb.jpg"
    loop_path.write_bytes(rendered.video)
    thumbnail_path.write_bytes(rendered.thumbnail)

    logger.info(
        f"Processing complete for {video_path}: {result.repetition_count} repetitions, "
        f"loop {result.loop_start:.2f}s-{result.loop_end:.2f}s -> {loop_path}"
    )

    return DrillProcessingResponse(
        analysis=analysis,
        status="processed",
        loop_path=str(loop_path),
        thumbnail_path=str(thumbnail_path),
    ).model_dump(by_alias=True)


process_drill_video_task = celery_app.task(name="process_drill_video")(process_drill_video)

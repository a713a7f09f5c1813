"""Pydantic schemas for drill analysis output."""

from app.schemas.analysis import (
    DrillAnalysisResponse,
    DrillProcessingResponse,
)

__all__ = [
    "DrillAnalysisResponse",
    "DrillProcessingResponse",
]

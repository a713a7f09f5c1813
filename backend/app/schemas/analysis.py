"""Drill analysis schemas."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.cv.drill_analyzer import AnalysisResult


class DrillAnalysisResponse(BaseModel):
    """Analysis output consumed by the drill record workflow."""
    model_config = ConfigDict(populate_by_name=True)

    duration: float = Field(..., ge=0, description="Video duration in seconds")
    repetitions: int = Field(..., ge=0)
    key_frames: List[int] = Field(default_factory=list, alias="keyFrames",
                                  description="Sample indices of local motion peaks")
    loop_start: float = Field(..., ge=0, alias="loopStart", description="Seconds")
    loop_end: float = Field(..., ge=0, alias="loopEnd", description="Seconds")
    confidence: float = Field(..., ge=0, le=1)

    @field_validator("key_frames")
    @classmethod
    def validate_key_frames(cls, v: List[int]) -> List[int]:
        if any(k < 0 for k in v):
            raise ValueError("key frame indices must not be negative")
        if v != sorted(v):
            raise ValueError("key frames must be in ascending order")
        return v

    @model_validator(mode="after")
    def validate_loop(self) -> "DrillAnalysisResponse":
        if self.loop_end > self.duration:
            raise ValueError(f"loopEnd {self.loop_end} exceeds duration {self.duration}")
        if self.loop_start > self.loop_end:
            raise ValueError(f"loopStart {self.loop_start} is after loopEnd {self.loop_end}")
        if self.loop_start == self.loop_end and self.loop_end != 0:
            raise ValueError("an empty loop is only allowed for the zero-value result")
        return self

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "DrillAnalysisResponse":
        return cls.model_validate(result.to_dict())


class DrillProcessingResponse(BaseModel):
    """Outcome of the drill processing task."""
    analysis: DrillAnalysisResponse
    status: str = Field(..., description="processed, or manual when no loop could be rendered")
    loop_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    error: Optional[str] = None

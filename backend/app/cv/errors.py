"""
Error taxonomy for drill analysis and loop rendering.

Only AnalysisTimeout and the render errors reach callers. SourceUnreadable
degrades to a zero-value result, SeekTimeout is absorbed per frame by reusing
the previously presented frame, and StrategyUnavailable moves the analyzer on
to the next configured strategy.
"""


class DrillAnalysisError(Exception):
    """Base class for all engine errors."""


class SourceUnreadable(DrillAnalysisError):
    """Video cannot be opened or reports a non-positive duration."""


class SeekTimeout(DrillAnalysisError):
    """A single seek did not present a frame in time."""

    def __init__(self, time: float, message: str = ""):
        self.time = time
        super().__init__(message or f"Seek to {time:.3f}s did not complete")


class AnalysisTimeout(DrillAnalysisError):
    """The whole analysis exceeded its wall-clock budget."""


class StrategyUnavailable(DrillAnalysisError):
    """An analysis strategy cannot run on this input or in this environment."""


class RenderError(DrillAnalysisError):
    """Loop rendering failed; partial output is discarded."""


class RenderTimeout(RenderError):
    """The render pass exceeded its wall-clock budget."""


class EncodingFailure(RenderError):
    """The external encoder rejected input or could not be opened."""

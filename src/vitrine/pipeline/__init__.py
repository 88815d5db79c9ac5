"""Job processing pipeline."""

from vitrine.pipeline.context import ProcessingContext
from vitrine.pipeline.executor import PipelineExecutor, PipelineOutcome
from vitrine.pipeline.stages import STAGE_ORDER, PipelineStages

__all__ = [
    "ProcessingContext",
    "PipelineExecutor",
    "PipelineOutcome",
    "PipelineStages",
    "STAGE_ORDER",
]

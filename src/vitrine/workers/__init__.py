"""Background workers for async processing tasks."""

from vitrine.workers.pipeline_worker import run_pipeline_worker

__all__ = ["run_pipeline_worker"]

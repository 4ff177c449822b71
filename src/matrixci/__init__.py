from .dsl import job, sh, matrix, pipeline, on_push, on_pull_request, JobBuilder, build
from .model import Job, Step, StepKind, Toolchain, CacheSpec, Pipeline, TriggerEvent, Status
from .runner import run_pipeline, PipelineRun, CancelPolicy, load_workflow

__all__ = [
    "job", "sh", "matrix", "pipeline", "on_push", "on_pull_request", "JobBuilder", "build",
    "Job", "Step", "StepKind", "Toolchain", "CacheSpec", "Pipeline", "TriggerEvent", "Status",
    "run_pipeline", "PipelineRun", "CancelPolicy", "load_workflow",
]

from .dsl import sh, toolchain, checkout, pipeline, PipelineBuilder, build
from .runner import run_pipeline, StepFailed, CIError
from .model import Pipeline, Run, RunStatus, Step, StepResult, Trigger
from .workflow import load_workflow

__all__ = [
    "sh", "toolchain", "checkout", "pipeline", "PipelineBuilder", "build",
    "run_pipeline", "StepFailed", "CIError",
    "Pipeline", "Run", "RunStatus", "Step", "StepResult", "Trigger",
    "load_workflow",
]

from .dsl import job, sh, setup, upload, publish, matrix, wf, JobBuilder, build, release_job
from .model import JobTemplate, TaskSpec, JobState, TaskOutcome
from .runner import run_pipeline, load_workflow, PipelineResult
from .trigger import EventDescriptor, Trigger, TriggerKind, classify

__all__ = [
    "job", "sh", "setup", "upload", "publish", "matrix", "wf", "JobBuilder", "build", "release_job",
    "JobTemplate", "TaskSpec", "JobState", "TaskOutcome",
    "run_pipeline", "load_workflow", "PipelineResult",
    "EventDescriptor", "Trigger", "TriggerKind", "classify",
]

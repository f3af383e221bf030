"""
stagehand.runner - Run a staged payload as an ephemeral pod.

Public API:
    JobRunner(scheduler).run(run_spec) -> Optional[str]
    build_pod(run_spec) -> dict
"""

from .job_runner import DockerRunner, JobRunner
from .job_spec import build_pod, generate_job_name
from .run_spec import (
    ContainerStatus,
    JobHandle,
    JobPhase,
    PodStatus,
    RunSpec,
    Secret,
)
from .scheduler import KubernetesScheduler, Scheduler

__all__ = [
    # Run spec
    "RunSpec",
    "Secret",
    "JobHandle",
    "JobPhase",
    "PodStatus",
    "ContainerStatus",
    # Builder
    "build_pod",
    "generate_job_name",
    # Scheduler
    "Scheduler",
    "KubernetesScheduler",
    # Runners
    "DockerRunner",
    "JobRunner",
]

"""
JobRunner - submit an execution unit, wait for it, collect its result.

State machine:
    submitted -> polling -> {Succeeded, Failed}

- Any non-terminal phase: wait poll_interval on the cancellation token, poll again
- Succeeded: result is the termination message of the run container (or None)
- Failed: result is None; a failed workload is not an error
- The pod is deleted exactly once whenever polling ends, including on
  cancellation and polling faults, so no ephemeral pod outlives run()

Usage:
    with JobRunner(KubernetesScheduler()) as runner:
        result_uri = runner.run(run_spec)
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from stagehand.errors import PollingError, RunCancelled, RunnerError, SubmissionError
from stagehand.runner.job_spec import RUN_CONTAINER, build_pod
from stagehand.runner.run_spec import JobHandle, JobPhase, PodStatus, RunSpec
from stagehand.runner.scheduler import Scheduler

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 60.0


class DockerRunner(ABC):
    """
    Abstract base class for container runners.

    One implementation per target scheduler. Runners are context managers;
    leaving the block closes the scheduler connection.
    """

    @abstractmethod
    def run(self, run_spec: RunSpec, cancel: Optional[threading.Event] = None) -> Optional[str]:
        """
        Run a container to completion.

        Args:
            run_spec: What to run
            cancel: Set to stop waiting; RunCancelled is raised

        Returns:
            Result URI from the workload, or None
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self) -> "DockerRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class JobRunner(DockerRunner):
    """DockerRunner driving any Scheduler implementation."""

    def __init__(self, scheduler: Scheduler, poll_interval: float = POLL_INTERVAL_SECONDS):
        self._scheduler = scheduler
        self._poll_interval = poll_interval
        self._closed = False

    def run(self, run_spec: RunSpec, cancel: Optional[threading.Event] = None) -> Optional[str]:
        handle = self.submit(run_spec)
        return self.await_completion(handle, cancel=cancel)

    def submit(self, run_spec: RunSpec) -> JobHandle:
        """
        Build the pod for `run_spec` and create it.

        Raises:
            SubmissionError: If the scheduler rejects the job
        """
        manifest = build_pod(run_spec)
        pod_name = manifest["metadata"]["name"]
        try:
            handle = self._scheduler.create(manifest)
        except Exception as e:
            raise SubmissionError(f"Failed to create pod {pod_name}: {e}") from e
        logger.info("Submitted pod %s running %s", handle.name, run_spec.image_with_tag)
        return handle

    def await_completion(
        self,
        handle: JobHandle,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[str]:
        """
        Block until the job reaches a terminal phase, then delete it.

        Raises:
            RunCancelled: If `cancel` was set while waiting
            PollingError: If the job status could not be read
            RunnerError: If the finished job could not be deleted
        """
        cancel = cancel or threading.Event()
        try:
            result = self._poll(handle, cancel)
        except BaseException:
            self._delete_quietly(handle)
            raise

        try:
            self._scheduler.delete(handle)
        except Exception as e:
            raise RunnerError(f"Failed to delete pod {handle.name}: {e}") from e
        logger.debug("Deleted pod %s", handle.name)
        return result

    def _poll(self, handle: JobHandle, cancel: threading.Event) -> Optional[str]:
        logger.debug("Checking running statuses of %s", handle.name)
        while True:
            try:
                status = self._scheduler.get(handle)
            except Exception as e:
                raise PollingError(f"Failed to read status of pod {handle.name}: {e}") from e

            if status.phase == JobPhase.SUCCEEDED:
                logger.info("Pod %s exited with status %s", handle.name, status.phase.value)
                return self._result(handle, status)

            if status.phase == JobPhase.FAILED:
                logger.warning("Pod %s exited with status %s", handle.name, status.phase.value)
                return None

            logger.debug("Pod %s is %s", handle.name, status.phase.value)
            if cancel.wait(self._poll_interval):
                logger.warning("Cancelled while waiting for pod %s", handle.name)
                raise RunCancelled(handle.name)

    @staticmethod
    def _result(handle: JobHandle, status: PodStatus) -> Optional[str]:
        container = status.container(RUN_CONTAINER)
        if container is None or not container.terminated_message:
            logger.info("Pod %s finished without a termination message", handle.name)
            return None
        message = container.terminated_message.strip()
        logger.info("Got termination message: %s", message)
        return message or None

    def _delete_quietly(self, handle: JobHandle) -> None:
        try:
            self._scheduler.delete(handle)
        except Exception:
            logger.exception("Failed to delete pod %s", handle.name)

    def close(self) -> None:
        """Release the scheduler connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._scheduler.close()

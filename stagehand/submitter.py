"""
Submitter - stage a payload with its dependencies, then run it on the cluster.

    caller -> Stager.stage_all(files)
           -> Stager.stage_all([payload]) -> RunSpec -> DockerRunner.run -> result URI

The payload is an opaque file produced by the caller; the container receives
the staging location and the payload's staged name as its two arguments.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from stagehand.errors import ArtifactReadError
from stagehand.runner import DockerRunner, RunSpec, Secret
from stagehand.staging import StagedPackage, Stager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedRun:
    """Everything a remote execution needs to find its inputs."""
    staging_location: str
    payload_name: str
    packages: list[StagedPackage]


class Submitter:
    """
    Stage-then-run pipeline for one execution unit at a time.

    Args:
        stager: Stager bound to the object store behind staging_location
        staging_location: Base URI to stage into
        runner: Runner used to execute staged payloads (optional for stage-only use)
    """

    def __init__(
        self,
        stager: Stager,
        staging_location: str,
        runner: Optional[DockerRunner] = None,
    ):
        if not staging_location:
            raise ValueError("staging_location is required")
        self._stager = stager
        self.staging_location = staging_location
        self._runner = runner

    def stage(self, payload: Path, files: Sequence[str] = ()) -> StagedRun:
        """
        Stage dependency files and the payload.

        Raises:
            ArtifactReadError: If the payload does not exist
            StagingError: If any artifact fails to stage
        """
        payload = Path(payload)
        if not payload.is_file():
            raise ArtifactReadError(f"Payload file not found: {payload}", path=str(payload))

        packages = []
        if files:
            packages = self._stager.stage_all(list(files), self.staging_location).packages
        # Passed as a Path so "=" in the payload path is never read as an override
        staged_payload = self._stager.stage_all([payload], self.staging_location)
        if not staged_payload.packages:
            raise ArtifactReadError(f"Payload file not found: {payload}", path=str(payload))

        payload_package = staged_payload.packages[0]
        payload_name = payload_package.location.rsplit("/", 1)[-1]
        logger.info("Staged payload %s as %s", payload, payload_name)

        return StagedRun(
            staging_location=self.staging_location,
            payload_name=payload_name,
            packages=[*packages, payload_package],
        )

    def run(
        self,
        payload: Path,
        image: str,
        secret: Secret,
        files: Sequence[str] = (),
        cancel: Optional[threading.Event] = None,
    ) -> Optional[str]:
        """
        Stage and execute a payload, returning the result URI if one was declared.

        Raises:
            ValueError: If the submitter has no runner
            StagingError: If staging fails
            RunnerError: If submission or polling fails
            RunCancelled: If `cancel` was set while waiting
        """
        if self._runner is None:
            raise ValueError("Submitter was created without a runner")

        staged = self.stage(payload, files)
        run_spec = RunSpec(
            image=image,
            staging_location=staged.staging_location,
            payload_file=staged.payload_name,
            secret=secret,
        )
        return self._runner.run(run_spec, cancel=cancel)

import io
from contextlib import contextmanager
from typing import Optional

import pytest

from stagehand.config import StagehandConfig
from stagehand.errors import ObjectExistsError
from stagehand.runner.run_spec import (
    ContainerStatus,
    JobHandle,
    JobPhase,
    PodStatus,
    RunSpec,
    Secret,
)


class _BrokenStream(io.BytesIO):
    """Stream that accepts nothing; every write raises `error`."""

    def __init__(self, error: BaseException):
        super().__init__()
        self.error = error

    def write(self, data) -> int:
        raise self.error


class FakeObjectStore:
    """
    In-memory ObjectStore.

    `failures` is a queue of exceptions; each upload attempt pops one and
    raises it before anything is written. `write_failures` is a queue of
    exceptions raised from the stream's first write instead, after the
    object was opened. `exists_error` is raised by every exists() call.
    An object is only stored when its write block finishes cleanly.
    """

    def __init__(self, failures=None, write_failures=None, exists_error=None):
        self.objects: dict[str, bytes] = {}
        self.failures = list(failures or [])
        self.write_failures = list(write_failures or [])
        self.exists_error = exists_error
        self.attempts: list[str] = []
        self.exists_calls: list[str] = []

    def exists(self, uri: str) -> Optional[int]:
        self.exists_calls.append(uri)
        if self.exists_error is not None:
            raise self.exists_error
        data = self.objects.get(uri)
        return None if data is None else len(data)

    @contextmanager
    def create_exclusive(self, uri: str, content_type: Optional[str] = None):
        self.attempts.append(uri)
        if self.failures:
            raise self.failures.pop(0)
        if uri in self.objects:
            raise ObjectExistsError(uri)
        if self.write_failures:
            buffer = _BrokenStream(self.write_failures.pop(0))
        else:
            buffer = io.BytesIO()
        yield buffer
        self.objects[uri] = buffer.getvalue()

    def is_access_denied(self, error: BaseException) -> bool:
        return isinstance(error, PermissionError)

    @property
    def uploads(self) -> int:
        return len(self.objects)


class FakeScheduler:
    """
    In-memory Scheduler.

    `phases` is the sequence of phases reported by successive get() calls;
    the last one repeats.
    """

    def __init__(self, phases=("Succeeded",), message: Optional[str] = None,
                 container: str = "stagehand-run", create_error=None, get_error=None):
        self.phases = list(phases)
        self.message = message
        self.container = container
        self.create_error = create_error
        self.get_error = get_error
        self.created: list[dict] = []
        self.deleted: list[JobHandle] = []
        self.get_calls = 0
        self.close_calls = 0

    def create(self, manifest: dict) -> JobHandle:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(manifest)
        return JobHandle(name=manifest["metadata"]["name"], namespace="default")

    def get(self, handle: JobHandle) -> PodStatus:
        if self.get_error is not None:
            raise self.get_error
        index = min(self.get_calls, len(self.phases) - 1)
        self.get_calls += 1
        phase = JobPhase.parse(self.phases[index])
        statuses = ()
        if phase.is_terminal:
            statuses = (
                ContainerStatus(name="sidecar", terminated_message="gs://wrong/container"),
                ContainerStatus(name=self.container, terminated_message=self.message),
            )
        return PodStatus(phase=phase, container_statuses=statuses)

    def delete(self, handle: JobHandle) -> None:
        self.deleted.append(handle)

    def close(self) -> None:
        self.close_calls += 1


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def delays() -> list[float]:
    """Collects backoff delays; pass `delays.append` as the sleeper."""
    return []


@pytest.fixture
def run_spec() -> RunSpec:
    return RunSpec(
        image="gcr.io/proj/worker",
        staging_location="gs://bucket/staging",
        payload_file="payload-abc.bin",
        secret=Secret("gcp-key", "/etc/gcloud"),
    )


@pytest.fixture
def test_config() -> StagehandConfig:
    return StagehandConfig(
        staging_location="gs://test-bucket/staging",
        image="gcr.io/test/worker",
        secret_name="gcp-key",
        secret_mount_path="/etc/gcloud",
        poll_interval_seconds=0.01,
    )

"""
Stager - content-addressed upload of local artifacts to a staging location.

Each element is a local path, or "name=path" to override the staged name.
For every element the stager:
1. Skips it with a warning if the local path does not exist
2. Computes size + content hash and the content-addressed target location
3. Skips the upload if an object of the same size already exists there
4. Otherwise uploads through an exclusive create, retrying with backoff

Access-denied failures are never retried. Any other upload failure is retried
until the backoff policy stops, then surfaced as TransientUploadError.
A failed cache lookup is not retried and aborts as StagingError.

Upload/cache counters are returned per call in a StagingReport.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from stagehand.errors import (
    ObjectExistsError,
    PermissionDeniedError,
    StagingError,
    TransientUploadError,
)
from stagehand.staging.digest import compute_digest, write_content
from stagehand.staging.naming import unique_content_name
from stagehand.staging.object_store import (
    BINARY,
    STORE_ERRORS,
    UPLOAD_ERRORS,
    ObjectStore,
    join_uri,
)
from stagehand.utils import ExponentialBackoff

logger = logging.getLogger(__name__)

# A reasonable upper bound on the number of artifacts staged for one run
SANE_ELEMENT_COUNT = 1000

INITIAL_BACKOFF_SECONDS = 5.0
MAX_RETRIES = 4

UPLOADED = "uploaded"
CACHED = "cached"
SKIPPED = "skipped"

# A local path, or "name=path" when given as a string
Element = Union[str, os.PathLike]


@dataclass(frozen=True)
class StagedPackage:
    """Where an artifact was staged and under which name."""
    name: str
    location: str


@dataclass(frozen=True)
class PackageAttributes:
    """
    Facts about one artifact needed to stage it or confirm it is unchanged.

    Attributes:
        size: Byte size of the staged stream (zip size for directories)
        content_hash: URL-safe hash of the staged stream
        is_directory: Whether the artifact is a directory
        staged_package: Target name and location
    """
    size: int
    content_hash: str
    is_directory: bool
    staged_package: StagedPackage

    def __post_init__(self):
        if not self.content_hash:
            raise ValueError("content_hash is required")
        if self.staged_package is None:
            raise ValueError("staged_package is required")


@dataclass
class StagingReport:
    """Counters for one staging call."""
    uploaded: int = 0
    cached: int = 0
    skipped: int = 0

    def record(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)


@dataclass(frozen=True)
class StagingResult:
    packages: list[StagedPackage]
    report: StagingReport


def parse_element(element: Element) -> tuple[Optional[str], str]:
    """
    Split "name=path" into (name, path); bare paths give (None, path).

    Path objects are never split, so a path containing "=" can be staged
    by passing it as a Path.
    """
    if isinstance(element, os.PathLike):
        return None, os.fspath(element)
    if "=" in element:
        name, path = element.split("=", 1)
        return name, path
    return None, element


def create_package_attributes(
    path: Path,
    staging_path: str,
    override_name: Optional[str] = None,
) -> PackageAttributes:
    """
    Compute the attributes of a local artifact that we need to stage it.

    Args:
        path: The local file or directory
        staging_path: Base location for staged artifacts
        override_name: If given, reported as the package name instead of the
            generated one. The location is always content-addressed.

    Raises:
        ArtifactReadError: If the artifact cannot be read
    """
    is_directory = path.is_dir()
    digest = compute_digest(path)
    unique_name = unique_content_name(path, digest.content_hash, is_directory)
    package = StagedPackage(
        name=override_name if override_name is not None else unique_name,
        location=join_uri(staging_path, unique_name),
    )
    return PackageAttributes(
        size=digest.size,
        content_hash=digest.content_hash,
        is_directory=is_directory,
        staged_package=package,
    )


class Stager:
    """
    Stages local artifacts to an ObjectStore.

    Args:
        object_store: Store to stage into
        sleeper: Called with the backoff delay in seconds between attempts
        backoff_factory: Creates a fresh backoff policy per upload
        max_workers: Stage up to this many artifacts concurrently
    """

    def __init__(
        self,
        object_store: ObjectStore,
        sleeper: Callable[[float], None] = time.sleep,
        backoff_factory: Optional[Callable[[], ExponentialBackoff]] = None,
        max_workers: int = 1,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._store = object_store
        self._sleeper = sleeper
        self._backoff_factory = backoff_factory or (
            lambda: ExponentialBackoff(
                initial_interval=INITIAL_BACKOFF_SECONDS, max_retries=MAX_RETRIES
            )
        )
        self._max_workers = max_workers

    def stage_elements(self, elements: Iterable[Element], staging_path: str) -> list[StagedPackage]:
        """Stage elements and return only the packages."""
        return self.stage_all(elements, staging_path).packages

    def stage_all(self, elements: Iterable[Element], staging_path: str) -> StagingResult:
        """
        Transfer local artifacts to the staging location.

        Args:
            elements: Local paths, optionally as "name=path"
            staging_path: Base location to stage the artifacts to

        Returns:
            StagingResult with packages in input order (skipped elements omitted)

        Raises:
            ValueError: If no staging location is given
            StagingError: If any artifact fails to stage
        """
        if not staging_path:
            raise ValueError("Can't stage artifacts because no staging location has been provided")

        elements = list(elements)
        logger.info(
            "Uploading %d files to staging location %s to prepare for execution",
            len(elements), staging_path,
        )
        if len(elements) > SANE_ELEMENT_COUNT:
            logger.warning(
                "Staging %d artifacts for one run. This many entries may be indicative "
                "of an issue; consider bundling dependencies or trimming the list.",
                len(elements),
            )

        if self._max_workers > 1 and len(elements) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                outcomes = list(pool.map(lambda e: self._stage_one(e, staging_path), elements))
        else:
            outcomes = [self._stage_one(e, staging_path) for e in elements]

        report = StagingReport()
        packages = []
        for package, outcome in outcomes:
            report.record(outcome)
            if package is not None:
                packages.append(package)

        logger.info(
            "Staging complete: %d files newly uploaded, %d files cached, %d skipped",
            report.uploaded, report.cached, report.skipped,
        )
        return StagingResult(packages=packages, report=report)

    def _stage_one(self, element: Element, staging_path: str) -> tuple[Optional[StagedPackage], str]:
        override_name, raw_path = parse_element(element)
        path = Path(raw_path).expanduser().absolute()

        if not path.exists():
            logger.warning("Skipping non-existent artifact %s that was specified", raw_path)
            return None, SKIPPED

        attributes = create_package_attributes(path, staging_path, override_name)
        package = attributes.staged_package

        if self._is_staged(path, attributes):
            logger.debug("Skipping artifact already staged: %s at %s", path, package.location)
            return package, CACHED

        if self._upload(path, attributes):
            return package, UPLOADED
        return package, CACHED

    def _is_staged(self, path: Path, attributes: PackageAttributes) -> bool:
        """
        True if an object of the same size is already at the target location.

        Raises:
            PermissionDeniedError: If the store refuses the lookup
            StagingError: If the lookup fails for any other reason
        """
        target = attributes.staged_package.location
        try:
            remote_size = self._store.exists(target)
        except STORE_ERRORS as e:
            if self._store.is_access_denied(e):
                raise self._permission_denied(path, target, "Checking staged object") from e
            logger.error("Could not check staged object %s for %s: %s", target, path, e)
            raise StagingError(
                f"Could not stage artifact {path}: lookup of {target} failed: {e}",
                path=str(path),
            ) from e
        return remote_size is not None and remote_size == attributes.size

    @staticmethod
    def _permission_denied(path: Path, target: str, action: str) -> PermissionDeniedError:
        message = (
            f"{action} failed due to permissions error, will NOT retry staging of "
            f"{path}. Please verify credentials are valid and that you have write "
            f"access to {target}. Stale credentials can be resolved by executing "
            f"'gcloud auth login'."
        )
        logger.error(message)
        return PermissionDeniedError(message, path=str(path), location=target)

    def _upload(self, path: Path, attributes: PackageAttributes) -> bool:
        """
        Upload one artifact, retrying on failure.

        Returns False if another writer staged identical content first.
        """
        target = attributes.staged_package.location
        backoff = self._backoff_factory()
        attempt = 0

        while True:
            attempt += 1
            try:
                logger.debug("Uploading %s to %s (attempt %d)", path, target, attempt)
                with self._store.create_exclusive(target, content_type=BINARY) as out:
                    write_content(path, out)
                return True
            except UPLOAD_ERRORS as e:
                if self._store.is_access_denied(e):
                    raise self._permission_denied(path, target, "Upload") from e

                if isinstance(e, ObjectExistsError) and self._is_staged(path, attributes):
                    logger.debug("Artifact %s was staged concurrently at %s", path, target)
                    return False

                delay = backoff.next_backoff()
                if delay is None:
                    logger.error(
                        "Upload failed after %d attempts, will NOT retry staging of %s: %s",
                        attempt, path, e,
                    )
                    raise TransientUploadError(
                        f"Could not stage artifact {path} after {attempt} attempts",
                        path=str(path),
                        attempts=attempt,
                    ) from e

                logger.warning(
                    "Upload attempt %d failed, sleeping %.1fs before retrying staging of %s: %s",
                    attempt, delay, path, e,
                )
                self._sleeper(delay)

"""
stagehand.staging - Content-addressed staging of local artifacts.

Public API:
    Stager(object_store).stage_all(elements, staging_path) -> StagingResult
    object_store_for(uri) -> ObjectStore
"""

from .digest import Digest, compute_digest, write_content
from .naming import unique_content_name
from .object_store import (
    GcsObjectStore,
    LocalObjectStore,
    ObjectStore,
    join_uri,
    object_store_for,
)
from .stager import (
    PackageAttributes,
    StagedPackage,
    Stager,
    StagingReport,
    StagingResult,
    create_package_attributes,
    parse_element,
)

__all__ = [
    # Digest
    "Digest",
    "compute_digest",
    "write_content",
    # Naming
    "unique_content_name",
    # Object stores
    "ObjectStore",
    "LocalObjectStore",
    "GcsObjectStore",
    "join_uri",
    "object_store_for",
    # Stager
    "Stager",
    "StagedPackage",
    "PackageAttributes",
    "StagingReport",
    "StagingResult",
    "create_package_attributes",
    "parse_element",
]

"""
Storage - blob backends and the per-project document layout.
"""
from .blob_store import BlobStore, LocalBlobStore, S3BlobStore, create_blob_store
from .project_store import ProjectStore, validate_id

__all__ = [
    'BlobStore',
    'LocalBlobStore',
    'S3BlobStore',
    'create_blob_store',
    'ProjectStore',
    'validate_id',
]

"""
BOS Storage - resumable, concurrent large-object uploads for BOS.

This package provides:
- An asyncio multipart upload engine with pause, resume and cancel
- A blocking client for the multipart protocol with bce-auth-v1 signing
- CLI tool for uploads and multipart housekeeping
"""

__version__ = "1.0.0"
__author__ = "BOS Storage Team"

from .core.api import BosStorageAPI, put_super_object, upload_file
from .core.client import AsyncBosClient, BosClient
from .core.exceptions import (
    BosStorageError,
    ClockSkewError,
    CompletionError,
    ConfigurationError,
    InvalidStateError,
    PartFailure,
    ServiceError,
    TransientTransportError,
    UploadIncompleteError,
    ValidationError,
)
from .core.exceptions import CancelledError as UploadCancelledError
from .core.models import (
    BosConfig,
    Part,
    PartStatus,
    ProgressEvent,
    StateChangeEvent,
    UploadConfig,
    UploadState,
)
from .core.planner import plan_parts
from .core.session import UploadSession
from .core.signer import BceSigner, ClockOffset

__all__ = [
    # Core classes
    "BosStorageAPI",
    "BosClient",
    "AsyncBosClient",
    "UploadSession",
    "BceSigner",
    "ClockOffset",
    # Models
    "BosConfig",
    "UploadConfig",
    "Part",
    "PartStatus",
    "UploadState",
    "ProgressEvent",
    "StateChangeEvent",
    # Exceptions
    "BosStorageError",
    "ValidationError",
    "ConfigurationError",
    "ServiceError",
    "TransientTransportError",
    "ClockSkewError",
    "PartFailure",
    "UploadIncompleteError",
    "CompletionError",
    "InvalidStateError",
    "UploadCancelledError",
    # Convenience functions
    "plan_parts",
    "put_super_object",
    "upload_file",
    # Metadata
    "__version__",
    "__author__",
]

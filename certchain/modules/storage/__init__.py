"""Content-addressed storage for certificate payloads."""

from certchain.modules.storage.base import ContentStore
from certchain.modules.storage.client import (
    PinataContentStore,
    StorageConfig,
    UploadResult,
    is_valid_cid,
)

__all__ = ["ContentStore", "PinataContentStore", "StorageConfig", "UploadResult", "is_valid_cid"]

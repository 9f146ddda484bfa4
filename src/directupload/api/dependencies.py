"""FastAPI dependency providers."""

from functools import lru_cache

from directupload.core.config import settings
from directupload.services.coordinator import UploadCoordinator
from directupload.storage.factory import get_storage_gateway
from directupload.storage.session_store import InMemorySessionStore, SessionStore


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    return InMemorySessionStore()


@lru_cache(maxsize=1)
def get_coordinator() -> UploadCoordinator:
    """Build the process-wide coordinator from settings."""
    return UploadCoordinator(
        store=get_session_store(),
        gateway=get_storage_gateway(),
        config=settings.upload_config(),
        key_prefix=settings.UPLOAD_KEY_PREFIX,
    )

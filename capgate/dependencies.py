from functools import lru_cache

from capgate.config import settings
from capgate.services.cap_service import CapService, build_cap_service


@lru_cache
def get_cap_service() -> CapService:
    """Process-wide CapService built from settings. Overridden in tests."""
    return build_cap_service(settings)

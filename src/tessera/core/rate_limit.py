from slowapi import Limiter
from slowapi.util import get_remote_address

from tessera.core.config import Settings


# ============================================================================
# Rate Limiter Setup
# ============================================================================
def create_limiter(settings: Settings) -> Limiter:
    """Build the limiter backing the ``throttle`` middleware."""
    return Limiter(
        key_func=get_remote_address,
        storage_uri=settings.rate_limit_storage_uri,
        enabled=settings.rate_limit_enabled,
    )

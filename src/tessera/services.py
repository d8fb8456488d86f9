"""
Process-wide collaborators shared by every request.

Built once at startup (or by tests) and handed to the dispatcher through
each Request.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from tessera.core.cache import MemoryCache, RedisCache, create_cache
from tessera.core.config import Settings
from tessera.core.database import Database, create_database_engine
from tessera.core.security import TokenAuth, configure_password_hasher
from tessera.queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    database: Database
    cache: MemoryCache | RedisCache
    token_auth: TokenAuth
    queue: JobQueue

    async def close(self) -> None:
        await self.cache.close()
        await self.database.dispose()


def build_services(settings: Settings, engine: AsyncEngine | None = None) -> Services:
    """
    Build the shared collaborators.

    Raises:
        ConfigurationError: If the token secret or algorithm is unusable
    """
    token_auth = TokenAuth.from_settings(settings)
    configure_password_hasher(settings)

    database = Database(engine or create_database_engine(settings))
    services = Services(
        settings=settings,
        database=database,
        cache=create_cache(settings),
        token_auth=token_auth,
        queue=JobQueue.from_settings(database, settings),
    )
    logger.info("Services initialized")
    return services

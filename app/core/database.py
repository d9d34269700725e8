# Async MongoDB connection manager

import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from core.config import settings

logger = structlog.get_logger(__name__)

# =====================================
# CONFIGURATION
# =====================================

@dataclass
class AsyncDatabaseConfig:
    """Async MongoDB configuration"""
    mongo_uri: str
    database_name: str
    max_pool_size: int = 50
    min_pool_size: int = 1
    server_selection_timeout_ms: int = 5000
    connect_timeout_ms: int = 5000
    socket_timeout_ms: int = 20000
    retry_writes: bool = True
    tz_aware: bool = True

    @classmethod
    def from_env(cls) -> "AsyncDatabaseConfig":
        """Create configuration from environment variables"""
        return cls(
            mongo_uri=os.getenv("MONGO_URI", settings.mongo_uri),
            database_name=os.getenv("MONGO_DATABASE", settings.mongo_database),
            max_pool_size=int(os.getenv("MONGO_MAX_POOL_SIZE", "50")),
            min_pool_size=int(os.getenv("MONGO_MIN_POOL_SIZE", "1")),
            server_selection_timeout_ms=int(os.getenv("MONGO_SERVER_TIMEOUT_MS", "5000")),
            connect_timeout_ms=int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", "5000")),
            socket_timeout_ms=int(os.getenv("MONGO_SOCKET_TIMEOUT_MS", "20000")),
        )

    def validate(self) -> None:
        if not self.mongo_uri:
            raise ValueError("MongoDB URI cannot be empty")
        if not self.database_name:
            raise ValueError("Database name cannot be empty")
        if self.max_pool_size < self.min_pool_size:
            raise ValueError("max_pool_size must be >= min_pool_size")


# =====================================
# ASYNC DATABASE MANAGER
# =====================================

class AsyncDatabaseManager:
    """
    Motor client owner. The API process keeps one for its lifetime; each
    worker job opens its own since a motor client is bound to the event
    loop it was created on.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None
        self._config: Optional[AsyncDatabaseConfig] = None

    async def initialize(self, config: Optional[AsyncDatabaseConfig] = None) -> None:
        async with self._lock:
            if self._client is not None:
                logger.warning("database_already_initialized")
                return

            config = config or AsyncDatabaseConfig.from_env()
            config.validate()

            client = AsyncIOMotorClient(
                config.mongo_uri,
                maxPoolSize=config.max_pool_size,
                minPoolSize=config.min_pool_size,
                serverSelectionTimeoutMS=config.server_selection_timeout_ms,
                connectTimeoutMS=config.connect_timeout_ms,
                socketTimeoutMS=config.socket_timeout_ms,
                retryWrites=config.retry_writes,
                tz_aware=config.tz_aware,
            )
            try:
                await asyncio.wait_for(
                    client.admin.command("ping"),
                    timeout=config.server_selection_timeout_ms / 1000,
                )
            except (ConnectionFailure, ServerSelectionTimeoutError, asyncio.TimeoutError) as e:
                client.close()
                logger.error("database_connect_failed", error=str(e))
                raise ConnectionFailure(f"Could not connect to MongoDB: {e}") from e

            self._client = client
            self._database = client[config.database_name]
            self._config = config
            logger.info(
                "database_connected",
                database=config.database_name,
                pool=f"{config.min_pool_size}-{config.max_pool_size}",
            )

    @property
    def is_initialized(self) -> bool:
        return self._database is not None

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._database is None:
            raise RuntimeError("AsyncDatabaseManager not initialized. Call `await initialize()` first.")
        return self._database

    async def health_check(self) -> Dict[str, Any]:
        timestamp = datetime.now(timezone.utc).isoformat()
        if self._client is None:
            return {"status": "unhealthy", "error": "Database not initialized", "timestamp": timestamp}

        started = datetime.now()
        try:
            await asyncio.wait_for(self._client.admin.command("ping"), timeout=5.0)
        except asyncio.TimeoutError:
            logger.error("database_health_timeout")
            return {"status": "unhealthy", "error": "Health check timeout", "timestamp": timestamp}
        except PyMongoError as e:
            logger.error("database_health_failed", error=str(e))
            return {"status": "unhealthy", "error": f"Connection error: {e}", "timestamp": timestamp}

        return {
            "status": "healthy",
            "latency_ms": round((datetime.now() - started).total_seconds() * 1000, 2),
            "database": self._config.database_name,
            "timestamp": timestamp,
        }

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                self._client.close()
                logger.info("database_closed")
            self._client = None
            self._database = None
            self._config = None


# Global manager for the API process
db_manager = AsyncDatabaseManager()


@asynccontextmanager
async def database_session(config: Optional[AsyncDatabaseConfig] = None):
    """
    Short-lived connection for worker jobs.

    Usage:
        async with database_session() as db:
            await RentalTransactionStore(db).ensure_indexes()
    """
    manager = AsyncDatabaseManager()
    await manager.initialize(config)
    try:
        yield manager.database
    finally:
        await manager.close()

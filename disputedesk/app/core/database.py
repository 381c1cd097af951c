"""
MongoDB connection management for the Dispute Desk service layer.

This module provides:
- Async MongoDB connection handling with motor
- Connection pooling options taken from settings
- Health checking
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from disputedesk.app.core.exceptions import ErrorCode, raise_database_error
from disputedesk.app.utils.logging import (
    database_logger,
    get_logger,
    initialize_logging_from_settings,
    performance_context,
)
from disputedesk.config.settings import (
    DatabaseSettings,
    Settings,
    get_settings,
    require_valid_settings,
)

logger = get_logger(__name__)


class MongoDBManager:
    """
    MongoDB connection and lifecycle management.

    One manager owns one motor client. Services receive the database handle
    from ``get_database()`` and never open connections themselves.
    """

    def __init__(self, database_settings: Optional[DatabaseSettings] = None):
        self.settings = database_settings or get_settings().database
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.is_connected: bool = False
        self._connection_lock = asyncio.Lock()

    async def connect(self) -> AsyncIOMotorDatabase:
        """
        Establish connection to MongoDB.

        Returns:
            The configured database handle

        Raises:
            DatabaseError: If connection fails
        """
        if self.is_connected:
            return self.database

        async with self._connection_lock:
            if self.is_connected:
                return self.database

            try:
                with performance_context("mongodb_connection"):
                    self.client = AsyncIOMotorClient(
                        self.settings.mongodb_url,
                        serverSelectionTimeoutMS=self.settings.server_selection_timeout_ms,
                        connectTimeoutMS=self.settings.connect_timeout_ms,
                        maxPoolSize=self.settings.max_pool_size,
                        minPoolSize=self.settings.min_pool_size,
                        tz_aware=True,
                    )
                    self.database = self.client[self.settings.mongodb_database]

                    await self.client.admin.command("ping")
                    self.is_connected = True

                    database_logger.connection_established(
                        database_type="mongodb",
                        database_name=self.settings.mongodb_database
                    )
                    logger.info(
                        "MongoDB connection established",
                        database=self.settings.mongodb_database,
                        uri=self.settings.mongodb_url.split("@")[-1]  # hide credentials
                    )

            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                database_logger.connection_failed("mongodb", str(e))
                raise_database_error(
                    f"Failed to connect to MongoDB: {e}",
                    operation="connect",
                    original_error=e,
                    error_code=ErrorCode.DATABASE_CONNECTION_ERROR
                )

        return self.database

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client and self.is_connected:
            self.client.close()
            self.is_connected = False
            self.database = None
            logger.info("MongoDB connection closed")

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform MongoDB health check.

        Returns:
            Health status information
        """
        if not self.is_connected or not self.client:
            return {
                "status": "disconnected",
                "error": "Not connected to MongoDB"
            }

        try:
            start_time = time.time()
            await self.client.admin.command("ping")
            latency = (time.time() - start_time) * 1000
            return {
                "status": "healthy",
                "latency_ms": round(latency, 2),
            }
        except PyMongoError as e:
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get the MongoDB database instance.

        Raises:
            DatabaseError: If not connected
        """
        if self.database is None:
            raise_database_error(
                "MongoDB not connected",
                operation="get_database",
                error_code=ErrorCode.DATABASE_CONNECTION_ERROR
            )
        return self.database


@asynccontextmanager
async def mongodb_session(settings: Optional[Settings] = None):
    """
    Async context manager that validates settings, configures logging,
    connects, yields the database and disconnects.

    Usage:
        async with mongodb_session() as db:
            services = build_services(db)
    """
    settings = require_valid_settings(settings)
    initialize_logging_from_settings(settings)
    manager = MongoDBManager(settings.database)
    database = await manager.connect()
    try:
        yield database
    finally:
        await manager.disconnect()

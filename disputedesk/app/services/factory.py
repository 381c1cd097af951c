"""
Service wiring.

Repositories and services are plain objects with constructor dependencies;
``build_services`` assembles them around one motor database handle.
"""

from dataclasses import dataclass
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from disputedesk.app.repositories.mongodb.case_repository import CaseRepository
from disputedesk.app.repositories.mongodb.message_repository import MessageRepository
from disputedesk.app.services.case_service import CaseService
from disputedesk.app.services.message_service import MessageService
from disputedesk.app.utils.logging import get_logger
from disputedesk.config.settings import Settings, get_settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServiceBundle:
    """Repositories and services sharing one database handle."""

    case_repository: CaseRepository
    message_repository: MessageRepository
    case_service: CaseService
    message_service: MessageService

    async def ensure_indexes(self) -> None:
        await self.case_repository.ensure_indexes()
        await self.message_repository.ensure_indexes()
        logger.info("Collection indexes ensured")


def build_services(database: AsyncIOMotorDatabase, settings: Optional[Settings] = None) -> ServiceBundle:
    """
    Factory function to create the service layer for a database.

    Args:
        database: Connected motor database
        settings: Application settings, defaults to the cached settings

    Returns:
        Configured ServiceBundle
    """
    settings = settings or get_settings()

    case_repository = CaseRepository(database, settings.database)
    message_repository = MessageRepository(database, settings.database)

    return ServiceBundle(
        case_repository=case_repository,
        message_repository=message_repository,
        case_service=CaseService(case_repository, settings),
        message_service=MessageService(message_repository, case_repository, settings),
    )

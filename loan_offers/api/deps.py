"""
Service wiring and request identity dependencies
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from ..audit import AuditTrail
from ..config import LendingConfig, get_config
from ..contacts import DirectoryContactResolver
from ..events import EventDispatcher
from ..models import Actor
from ..repository import StorageOfferRepository
from ..service import OfferService
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface


class LendingSystem:
    """Offer service with its storage, audit trail and event dispatcher"""

    def __init__(self, config: Optional[LendingConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        if storage is not None:
            self.storage = storage
        elif self.config.storage_backend == "sqlite":
            self.storage = SQLiteStorage(self.config.sqlite_path)
        else:
            self.storage = InMemoryStorage()

        self.audit_trail = AuditTrail(self.storage)
        self.event_dispatcher = EventDispatcher()
        self.contact_resolver = DirectoryContactResolver()
        self.repository = StorageOfferRepository(self.storage)
        self.offer_service = OfferService(
            repository=self.repository,
            event_dispatcher=self.event_dispatcher,
            audit_trail=self.audit_trail,
            contact_resolver=self.contact_resolver,
            config=self.config
        )

    def close(self) -> None:
        self.storage.close()


_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    """Process-wide system, created on first request"""
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_phone: Optional[str] = Header(None)
) -> Actor:
    """Verified identity forwarded by the identity provider in front of the API"""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return Actor(user_id=x_user_id, phone=x_user_phone)

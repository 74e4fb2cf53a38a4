"""
Client directory.

The CRUD app owns clients and tracked keywords; the engine only needs to
resolve a client by id or by its normalized domain, and to check that a
tracked keyword exists.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from rankwatch.errors import StoreError
from rankwatch.models import ClientRecord
from rankwatch.utils.domain import normalize_domain
from .models import Client, TrackedKeyword

logger = logging.getLogger(__name__)


class ClientDirectory(ABC):
    """Abstract client lookup."""

    @abstractmethod
    def get_client(self, client_id: UUID) -> Optional[ClientRecord]:
        """Get a client by id."""
        pass

    @abstractmethod
    def find_by_domain(self, domain: str) -> Optional[ClientRecord]:
        """Get the client whose normalized domain equals domain."""
        pass

    @abstractmethod
    def has_tracked_keyword(self, keyword_id: UUID) -> bool:
        """Whether a tracked keyword with this id exists."""
        pass


class SQLClientDirectory(ClientDirectory):
    """Client directory over the clients table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_client(self, client_id: UUID) -> Optional[ClientRecord]:
        try:
            with self._session_factory() as session:
                client = session.get(Client, client_id)
                return client.to_record() if client else None
        except SQLAlchemyError as e:
            raise StoreError(f"Client lookup failed for {client_id}: {e}") from e

    def find_by_domain(self, domain: str) -> Optional[ClientRecord]:
        domain = normalize_domain(domain)
        if not domain:
            return None
        try:
            with self._session_factory() as session:
                # Oldest client wins when two share a domain
                client = session.execute(
                    select(Client).where(Client.domain == domain).order_by(Client.created_at)
                ).scalars().first()
                return client.to_record() if client else None
        except SQLAlchemyError as e:
            raise StoreError(f"Client lookup failed for {domain}: {e}") from e

    def has_tracked_keyword(self, keyword_id: UUID) -> bool:
        try:
            with self._session_factory() as session:
                return session.get(TrackedKeyword, keyword_id) is not None
        except SQLAlchemyError as e:
            raise StoreError(f"Tracked keyword lookup failed for {keyword_id}: {e}") from e

    def add_client(self, name: str, website: Optional[str] = None) -> ClientRecord:
        """Register a client; the domain is derived from the website."""
        try:
            with self._session_factory() as session:
                client = Client(name=name, website=website, domain=normalize_domain(website) or None)
                session.add(client)
                session.commit()
                logger.info(f"Registered client {name} ({client.domain})")
                return client.to_record()
        except SQLAlchemyError as e:
            raise StoreError(f"Could not register client {name}: {e}") from e

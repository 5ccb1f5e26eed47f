from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from ledger_sync.connectors.result import Page, Result
from ledger_sync.schemas.ledger import RemoteEntity


class BaseLedgerConnector(ABC):
    """
    Abstract base for remote ledger clients.

    Implementations never raise for HTTP outcomes: every call returns ``Ok``,
    ``RetryableError`` or ``TerminalError`` and callers own the retry loop.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    @abstractmethod
    async def list_entities(
        self,
        entity_type: str,
        page: int,
        page_size: int,
        modified_since: Optional[datetime] = None,
    ) -> Result[Page[RemoteEntity]]:
        """Fetches one page of entities, 1-based."""
        pass

    @abstractmethod
    async def get_entity(self, entity_type: str, remote_id: str) -> Result[RemoteEntity]:
        """Fetches a single entity by its remote identifier."""
        pass

    @abstractmethod
    async def create_entity(
        self, entity_type: str, body: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> Result[RemoteEntity]:
        """
        Creates an entity and returns the ledger's stored representation.

        A repeated call with the same ``idempotency_key`` must return the
        record stored by the first call instead of creating another one.
        """
        pass

    @abstractmethod
    async def update_entity(
        self, entity_type: str, remote_id: str, body: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> Result[RemoteEntity]:
        """Updates an entity and returns the ledger's stored representation."""
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Validates the connection to the ledger."""
        pass

    async def close(self):
        pass

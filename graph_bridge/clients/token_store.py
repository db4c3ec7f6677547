"""Token store interface and the process-local adapter."""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from graph_bridge.models.token import TokenRecord


class TokenStore(Protocol):
    """Keyed persistence for one ``TokenRecord`` per principal."""

    def get(self, principal_id: str) -> Optional[TokenRecord]:
        ...

    def put(self, principal_id: str, record: TokenRecord) -> None:
        ...

    def close(self) -> None:
        ...


class InMemoryTokenStore:
    """Dictionary-backed store; contents live as long as the owning app instance."""

    def __init__(self) -> None:
        self._records: Dict[str, TokenRecord] = {}

    def get(self, principal_id: str) -> Optional[TokenRecord]:
        return self._records.get(principal_id)

    def put(self, principal_id: str, record: TokenRecord) -> None:
        self._records[principal_id] = record

    def close(self) -> None:
        self._records.clear()


__all__ = ["InMemoryTokenStore", "TokenStore"]

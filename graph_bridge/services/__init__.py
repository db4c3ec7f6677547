"""Service layer exports."""

from .graph_tokens import APPLICATION_PRINCIPAL, GraphTokenService
from .token_cipher import TokenCipherService

__all__ = [
    "APPLICATION_PRINCIPAL",
    "GraphTokenService",
    "TokenCipherService",
]

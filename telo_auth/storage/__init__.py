"""Token and session persistence."""

from telo_auth.storage.tiers import FileTier, MemoryTier, StorageTier
from telo_auth.storage.token_store import TokenStore

__all__ = ["FileTier", "MemoryTier", "StorageTier", "TokenStore"]

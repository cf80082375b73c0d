"""Token store: the single source of truth for "is there a usable session".

Four logical keys (access token, refresh token, cached user, remember-me
flag) are duplicated across a durable and an ephemeral tier. The remember-me
flag always lives in the durable tier so it is readable after a restart even
when the tokens themselves were ephemeral.
"""

from pydantic import ValidationError

from telo_auth.config import Settings
from telo_auth.schemas.auth import TokenPair, UserRecord
from telo_auth.storage.tiers import FileTier, MemoryTier, StorageTier
from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "user_access_token"
REFRESH_TOKEN_KEY = "user_refresh_token"
USER_DATA_KEY = "user_data"
REMEMBER_ME_KEY = "remember_me"


class TokenStore:
    """Durable/ephemeral persistence for the token pair and cached user."""

    def __init__(
        self,
        durable: StorageTier,
        ephemeral: StorageTier,
        key_prefix: str = "telo_",
    ) -> None:
        self.durable = durable
        self.ephemeral = ephemeral
        self._access_key = f"{key_prefix}{ACCESS_TOKEN_KEY}"
        self._refresh_key = f"{key_prefix}{REFRESH_TOKEN_KEY}"
        self._user_key = f"{key_prefix}{USER_DATA_KEY}"
        self._remember_key = f"{key_prefix}{REMEMBER_ME_KEY}"
        self._generation = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenStore":
        """Build a store with a file-backed durable tier and an in-memory ephemeral tier."""
        return cls(
            durable=FileTier(settings.session_store_path),
            ephemeral=MemoryTier(),
            key_prefix=settings.storage_key_prefix,
        )

    @property
    def generation(self) -> int:
        """Incremented on every clear(); lets async writers detect a logout."""
        return self._generation

    def remember_me(self) -> bool:
        """Return the persisted remember-me decision (defaults to True)."""
        return self.durable.get(self._remember_key) != "false"

    def session_tier(self) -> StorageTier:
        """Return the tier selected by the last remember-me decision."""
        return self.durable if self.remember_me() else self.ephemeral

    def put(self, tokens: TokenPair, remember_me: bool) -> None:
        """Store both tokens in the tier selected by `remember_me`.

        The pair is written to its tier in a single update, so a failed
        write leaves the previous pair intact rather than a mixed one.
        """
        pair = {
            self._access_key: tokens.access_token,
            self._refresh_key: tokens.refresh_token,
        }
        flag = {self._remember_key: "true" if remember_me else "false"}

        if remember_me:
            self.durable.update({**pair, **flag})
            self.ephemeral.update({}, remove=pair)
        else:
            self.ephemeral.update(pair)
            # Durable reads win, so a stale pair there must not survive.
            self.durable.update(flag, remove=pair)

    def put_user(self, user: UserRecord) -> None:
        """Cache the user record in the current session tier."""
        tier = self.session_tier()
        tier.set(self._user_key, user.model_dump_json(by_alias=True))
        other = self.ephemeral if tier is self.durable else self.durable
        other.remove(self._user_key)

    def get_access_token(self) -> str | None:
        return self._read_through(self._access_key)

    def get_refresh_token(self) -> str | None:
        return self._read_through(self._refresh_key)

    def get_tokens(self) -> TokenPair | None:
        """Return the stored pair, or None unless both tokens are present."""
        access_token = self.get_access_token()
        refresh_token = self.get_refresh_token()
        if not access_token or not refresh_token:
            return None
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def get_user(self) -> UserRecord | None:
        """Return the cached user; missing or corrupt data reads as None."""
        raw = self._read_through(self._user_key)
        if raw is None:
            return None

        try:
            return UserRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cached user record")
            return None

    def clear(self) -> None:
        """Remove every session key from both tiers."""
        keys = (
            self._access_key,
            self._refresh_key,
            self._user_key,
            self._remember_key,
        )
        for tier in (self.durable, self.ephemeral):
            tier.update({}, remove=keys)
        self._generation += 1
        logger.debug("Token store cleared")

    def _read_through(self, key: str) -> str | None:
        return self.durable.get(key) or self.ephemeral.get(key)

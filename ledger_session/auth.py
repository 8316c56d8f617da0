"""
Auth Session — authorization token lifecycle for one ledger identity.

States::

    NO_TOKEN -> ACQUIRING -> VALID -> EXPIRED -> ACQUIRING -> VALID ...
                                      ... -> INVALIDATED (terminal)

A valid token is persisted as a snapshot in the secret store and a
single renewal task is scheduled to fire at expiry (minus a safety
margin). Every secret replacement and invalidation bumps an epoch
counter; token responses that arrive under an older epoch are dropped.

Security Note:
    Never log secrets or token values.
"""
import time
import asyncio
import logging
from enum import Enum
from typing import Any, Optional
from collections.abc import Callable

import orjson
from pydantic import BaseModel, ValidationError

from .conf import STORE_AUTH_TOKEN_KEY, STORE_SECRET_KEY, STORE_USERNAME_KEY
from .exceptions import AuthError
from .identity import IdentityDeriver
from .ledger import LedgerClient, response_payload
from .storage import SecretStore

logger = logging.getLogger("ledger.auth")


class TokenState(str, Enum):
    NO_TOKEN = 'no_token'
    ACQUIRING = 'acquiring'
    VALID = 'valid'
    EXPIRED = 'expired'
    INVALIDATED = 'invalidated'


class AuthToken(BaseModel):
    """Short-lived authorization token bound to one secret."""

    token: str
    issued_at: float
    expires_at: float
    fingerprint: Optional[str] = None

    @classmethod
    def issue(
        cls,
        token: str,
        expires_in_ms: int,
        fingerprint: Optional[str],
        now: float,
    ) -> "AuthToken":
        return cls(
            token=token,
            issued_at=now,
            expires_at=now + expires_in_ms / 1000.0,
            fingerprint=fingerprint,
        )

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def ttl(self, now: float) -> float:
        """Seconds left before expiry (never negative)."""
        return max(self.expires_at - now, 0.0)

    def snapshot(self) -> str:
        """Serialized form stored across process restarts."""
        return orjson.dumps(self.model_dump()).decode("utf-8")

    @classmethod
    def restore(cls, snapshot: Any, fingerprint: Optional[str]) -> Optional["AuthToken"]:
        """Rebuild a token from its snapshot.

        Returns:
            The token, or None when the snapshot is unreadable or was
            issued for a different secret.
        """
        try:
            data = orjson.loads(snapshot) if isinstance(snapshot, (str, bytes)) else snapshot
            token = cls.model_validate(data)
        except (orjson.JSONDecodeError, ValidationError) as err:
            logger.warning("Discarding unreadable auth token snapshot: %s", err)
            return None
        if token.fingerprint != fingerprint:
            logger.info("Stored auth token belongs to another secret; discarding.")
            return None
        return token


class AuthSession:
    """Owns the token state machine of a single session.

    Callers must serialize ``authorize`` and ``invalidate``; the only
    background activity is the renewal task.
    """

    def __init__(
        self,
        client: LedgerClient,
        store: SecretStore,
        deriver: IdentityDeriver,
        renewal_margin: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._store = store
        self._deriver = deriver
        self._margin = renewal_margin
        self._clock = clock
        self._state = TokenState.NO_TOKEN
        self._token: Optional[AuthToken] = None
        self._secret: Optional[str] = None
        self._timer: Optional[asyncio.Task] = None
        self._epoch = 0
        self.renewals = 0

    def __repr__(self) -> str:
        return f'<AuthSession state={self.state.value} epoch={self._epoch}>'

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> TokenState:
        if (
            self._state is TokenState.VALID
            and self._token is not None
            and self._token.is_expired(self._clock())
        ):
            self._state = TokenState.EXPIRED
        return self._state

    @property
    def token(self) -> Optional[AuthToken]:
        return self._token

    @property
    def invalidated(self) -> bool:
        return self._state is TokenState.INVALIDATED

    @property
    def renewal_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def authorize(self, secret: Optional[str] = None) -> Optional[AuthToken]:
        """Make sure the session holds a valid token.

        Args:
            secret: A new secret. Replaces the persisted one and forces a
                new token regardless of the current token.

        Returns:
            The valid token.

        Raises:
            AuthError: If the session was invalidated or the token
                request failed.
        """
        if self.invalidated:
            raise AuthError("Session was invalidated; start a new session")

        if secret:
            logger.debug("Replacing user secret...")
            self._epoch += 1
            self.reset_auth_timeout()
            # a token is only valid for the secret it was issued against
            self._token = None
            self._state = TokenState.NO_TOKEN
            self._client.set_auth_token(None)
            if not await self._store.set(STORE_SECRET_KEY, secret):
                logger.warning("Could not persist the new secret")
            self._secret = secret
        else:
            self._secret = await self._store.get(STORE_SECRET_KEY) or self._secret

        if self._secret:
            self._client.set_secret(self._secret)

        fingerprint = self._deriver.fingerprint(self._secret)
        if not secret:
            restored = await self._restore(fingerprint)
            if restored is not None:
                return restored

        return await self._acquire(self._secret, fingerprint)

    async def invalidate(self) -> None:
        """Cancel renewal, forget the token and clear persisted credentials.

        Terminal for this session instance. Safe to call repeatedly.
        """
        # cancel before clearing credentials so no renewal can follow
        self.reset_auth_timeout()
        self._epoch += 1
        self._state = TokenState.INVALIDATED
        self._token = None
        self._secret = None
        for key in (STORE_USERNAME_KEY, STORE_SECRET_KEY, STORE_AUTH_TOKEN_KEY):
            if not await self._store.delete(key):
                logger.warning("Could not delete stored key=%s", key)
        logger.debug("Auth session invalidated.")

    def reset_auth_timeout(self) -> None:
        """Cancel the pending renewal, if any."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def set_auth_timeout(self, ttl: float) -> None:
        """Schedule the renewal ``ttl`` seconds from now.

        Any pending renewal is cancelled first, so at most one exists.
        """
        self.reset_auth_timeout()
        if ttl <= 0:
            logger.warning("Token has no lifetime left; renewal not scheduled.")
            return
        delay = max(ttl - self._margin, 0.0)
        self._timer = asyncio.create_task(self._renew_later(delay, self._epoch))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _restore(self, fingerprint: Optional[str]) -> Optional[AuthToken]:
        snapshot = await self._store.get(STORE_AUTH_TOKEN_KEY)
        if not snapshot:
            return None
        token = AuthToken.restore(snapshot, fingerprint)
        if token is None:
            return None
        now = self._clock()
        if token.is_expired(now):
            logger.info("Stored auth token has expired.")
            self._state = TokenState.EXPIRED
            return None
        logger.info("Restored stored auth token.")
        self._activate(token, now)
        return token

    async def _acquire(self, secret: Optional[str], fingerprint: Optional[str]) -> Optional[AuthToken]:
        epoch = self._epoch
        previous = self._state
        self._state = TokenState.ACQUIRING
        logger.info("Requesting a new auth token...")
        try:
            access = response_payload(
                await self._client.request_auth_token(secret)
            )
            token_value = access.get('token')
            expires_in = int(access.get('expiresInMs', access.get('time')))
        except Exception as err:
            self._fail(epoch, previous)
            raise AuthError(f"Auth token request failed: {err}") from err
        if not token_value:
            self._fail(epoch, previous)
            raise AuthError("Ledger response carries no auth token")

        if epoch != self._epoch:
            logger.debug("Discarding auth token issued under a stale epoch.")
            return self._token

        now = self._clock()
        token = AuthToken.issue(token_value, expires_in, fingerprint, now)
        self._activate(token, now)
        if not await self._store.set(STORE_AUTH_TOKEN_KEY, token.snapshot()):
            logger.warning("Could not persist the auth token snapshot")
        logger.info("Auth token acquired; expires in %.3fs.", token.ttl(now))
        return token

    def _fail(self, epoch: int, previous: TokenState) -> None:
        if epoch != self._epoch:
            return
        if previous in (TokenState.VALID, TokenState.EXPIRED):
            self._state = TokenState.EXPIRED
        else:
            self._state = TokenState.NO_TOKEN

    def _activate(self, token: AuthToken, now: float) -> None:
        self._token = token
        self._state = TokenState.VALID
        self._client.set_auth_token(token.token)
        self.set_auth_timeout(token.ttl(now))

    async def _renew_later(self, delay: float, epoch: int) -> None:
        await asyncio.sleep(delay)
        if epoch != self._epoch or self.invalidated:
            return
        # this task is running now; a new schedule must not cancel it
        self._timer = None
        self.renewals += 1
        logger.debug("Renewing auth token...")
        try:
            await self._acquire(self._secret, self._deriver.fingerprint(self._secret))
        except AuthError as err:
            logger.error("Auth token renewal failed: %s", err)

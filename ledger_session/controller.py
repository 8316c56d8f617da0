"""
Identity Controller — user-facing operations of a ledger session.

Orchestrates endpoint selection, identity derivation, token
authorization and the profile record:
- ``connect(uris)`` — bind a ledger client to the live endpoints
- ``init(secret)`` — restore or start the session from a secret
- ``verify_login`` / ``login`` / ``register`` / ``logout``
- ``update()`` — refresh the local profile projection
- ``is_username_unique`` / ``is_username_invited`` — hashed lookups

Operations on one controller must not overlap; callers serialize them.

Security Note:
    Never log secrets, passwords or cleartext usernames.
"""
import time
import logging
from typing import Optional, Union
from collections.abc import Callable, Sequence

from .auth import AuthSession
from .conf import (
    STORE_AUTH_TOKEN_KEY,
    STORE_SECRET_KEY,
    STORE_USERNAME_KEY,
    SESSION_KEY,
    LedgerSettings,
)
from .data import Profile, SessionData
from .endpoints import EndpointProber
from .exceptions import AuthError, DataIntegrityError
from .identity import IdentityDeriver, random_string
from .ledger import ClientFactory, LedgerClient
from .models import Invite, MetaFilter, TypeRegistry, WalletBundle
from .storage import SecretStore

logger = logging.getLogger("ledger.controller")

AUTH_2FA_LENGTH = 8


class IdentityController:
    """Session manager for one ledger identity."""

    def __init__(
        self,
        settings: LedgerSettings,
        store: SecretStore,
        client_factory: ClientFactory,
        prober: Optional[EndpointProber] = None,
        registry: Optional[TypeRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.deriver = IdentityDeriver(settings.salt)
        self.registry = registry or TypeRegistry.from_settings(settings)
        self._client_factory = client_factory
        self._prober = prober or EndpointProber(timeout=settings.probe_timeout)
        self._clock = clock
        self._auth2fa: Optional[str] = None
        self.session = SessionData(new=True)

    def __repr__(self) -> str:
        return f'<IdentityController {self.session!r}>'

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def client(self) -> Optional[LedgerClient]:
        return self.session.client

    @property
    def auth(self) -> Optional[AuthSession]:
        return self.session.session_objects().get('auth')

    @property
    def logged_in(self) -> bool:
        return self.session.logged_in

    @property
    def bundle(self) -> Optional[str]:
        return self.session.bundle

    @property
    def user_is_authorized(self) -> bool:
        """True when the current bundle is a configured administrator."""
        return bool(self.bundle) and self.bundle in self.settings.admins

    @property
    def short_bundle(self) -> str:
        bundle = self.bundle
        return bundle[-4:].upper() if bundle else 'N/A'

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, endpoint_uris: Optional[Sequence[str]] = None) -> bool:
        """Bind a ledger client to the endpoints that currently answer.

        Never raises for unreachable endpoints: the session is flagged
        with ``has_error`` and stays unconnected.
        """
        uris = list(endpoint_uris if endpoint_uris is not None else self.settings.server_uris)
        live = await self._prober.probe(uris)
        if not live:
            logger.error("No ledger servers are available for connection!")
            self.session.has_error = True
            return False
        logger.info("Creating ledger client connected to %d node(s)...", len(live))
        self.session.client = self._client_factory(live)
        self.session.server_uris = live
        self.session.has_error = False
        return True

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def hash(self, data: str, length: int = 64, salted: bool = True) -> str:
        return self.deriver.hash(data, length=length, salted=salted)

    def _resolve_secret(
        self,
        username: Optional[str],
        password: Optional[str],
        secret: Optional[str],
    ) -> str:
        if secret:
            return secret
        return self.deriver.derive_secret(username or '', password or '')

    async def _find_profile(self, bundle: str) -> WalletBundle:
        profile = WalletBundle(registry=self.registry)
        await profile.query(self.client, bundle_hash=bundle)
        return profile

    async def verify_login(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> bool:
        """Check that a profile exists for the given credentials.

        Raises:
            ConfigurationError: If the secret must be derived and no
                salt is configured.
        """
        secret = self._resolve_secret(username, password, secret)
        bundle = self.deriver.derive_bundle_id(secret)
        logger.info("Verifying login for bundle %s...", bundle)
        if self.client is None:
            logger.error("No ledger client available!")
            return False
        profile = await self._find_profile(bundle)
        return bool(profile.id) and len(profile.metas) > 0

    def _check_2fa(self, auth2fa: Optional[str]) -> Union[bool, str]:
        """Second factor gate.

        Returns:
            A new one-time code to hand to the user, True when the code
            matches, False on mismatch.
        """
        if not self._auth2fa or auth2fa is None:
            self._auth2fa = random_string(AUTH_2FA_LENGTH)
            return self._auth2fa
        return self._auth2fa == auth2fa

    async def _gate(self, auth2fa: Optional[str]) -> Union[bool, str]:
        if not self.settings.two_factor_enabled:
            return True
        check = self._check_2fa(auth2fa)
        if check is False:
            logger.warning("2FA failure. Aborting login...")
            await self.logout()
        return check

    def _auth_session(self) -> AuthSession:
        auth = self.auth
        if auth is None or auth.invalidated:
            auth = AuthSession(
                self.client,
                self.store,
                self.deriver,
                renewal_margin=self.settings.token_renewal_margin,
                clock=self._clock,
            )
            self.session.auth = auth
        return auth

    async def authorize(self, secret: Optional[str] = None) -> None:
        """Make sure the session holds a valid auth token.

        Raises:
            AuthError: If the token request failed.
        """
        if self.client is None:
            logger.error("No ledger client available!")
            return
        try:
            await self._auth_session().authorize(secret)
        except AuthError:
            await self.logout()
            raise

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def init(self, new_secret: Optional[str] = None) -> bool:
        """Bootstrap the session from a new or the persisted secret.

        Returns:
            True when the session ends up logged in.
        """
        if self.client is None:
            logger.error("No ledger client available!")
            return False
        logger.info("Beginning bootstrap procedure...")
        if new_secret:
            secret = new_secret
        else:
            secret = await self.store.get(STORE_SECRET_KEY)

        await self.authorize(new_secret)

        if secret:
            await self.store.set(STORE_SECRET_KEY, secret)
            self.session[SESSION_KEY] = self.deriver.derive_bundle_id(secret)
            logger.info("Establishing bundle hash %s...", self.bundle)
            self.session.username = await self.store.get(STORE_USERNAME_KEY)
            # if the profile cannot be refreshed we are logged out
            self.session.logged_in = await self.update()
        else:
            logger.warning("User is not logged in...")
            self.session.logged_in = False

        self.session.initialized = True
        logger.info("Bootstrap complete.")
        return self.logged_in

    async def login(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        secret: Optional[str] = None,
        auth2fa: Optional[str] = None,
    ) -> Union[bool, str]:
        """Log in with a username/password pair or a secret.

        Returns:
            True on success, False on unknown credentials or 2FA
            mismatch, or the one-time code when 2FA is enabled and
            no code was given yet.
        """
        if not await self.verify_login(username, password, secret):
            logger.warning("User not registered; aborting login...")
            await self.logout()
            return False

        gate = await self._gate(auth2fa)
        if gate is not True:
            return gate

        logger.info("Logging in...")
        secret = self._resolve_secret(username, password, secret)
        await self.authorize(secret)
        self.session.logged_in = True
        self.session.username = username
        self._auth2fa = None
        await self.store.set(STORE_USERNAME_KEY, username)
        await self.init()
        return self.logged_in

    async def register(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        secret: Optional[str] = None,
        public_name: Optional[str] = None,
        auth2fa: Optional[str] = None,
    ) -> Union[bool, str]:
        """Create the profile record of a new user.

        An already registered user is logged in instead.

        Raises:
            DataIntegrityError: If the ledger rejected the new profile;
                the session is logged out first.
        """
        logger.info("Starting registration process...")
        if await self.verify_login(username, password, secret):
            logger.warning("User already registered; logging in instead...")
            return await self.login(username, password, secret, auth2fa)

        gate = await self._gate(auth2fa)
        if gate is not True:
            return gate

        logger.info("Registering...")
        secret = self._resolve_secret(username, password, secret)
        await self.authorize(secret)
        self.session.logged_in = True
        self.session.username = username
        self._auth2fa = None
        await self.store.set(STORE_USERNAME_KEY, username)

        profile = WalletBundle(registry=self.registry)
        response = await profile.save(
            self.client,
            meta_id=self.deriver.derive_bundle_id(secret),
            meta_data={
                'publicName': public_name,
                'usernameHash': self.hash(username),
                'appSlug': str(self.settings.app_slug),
            },
        )
        if response.ok:
            await self.init()
            return True

        await self.logout()
        raise DataIntegrityError(
            f"Profile registration failed: {response.error_message or 'rejected by ledger'}"
        )

    async def update(self) -> bool:
        """Refresh the profile projection from the ledger.

        A missing profile means the session is not really logged in:
        the session is logged out and False is returned.
        """
        logger.info("Beginning remote update...")
        bundle = self.bundle
        profile = await self._find_profile(bundle) if bundle and self.client else None
        if profile is None or not profile.id or not profile.metas:
            logger.warning("Cannot find user metadata...")
            await self.logout()
            return False

        logger.info("Retrieved %d metadata field(s)...", len(profile.metas))
        try:
            self.session.created_at = int(profile.created_at)
        except (TypeError, ValueError):
            self.session.created_at = profile.created_at
        self.session.profile = Profile(
            public_name=profile.metas.get('publicName'),
            avatar=profile.metas.get('avatar'),
            cover=profile.metas.get('cover'),
            username=await self.store.get(STORE_USERNAME_KEY),
        )
        self.session.metas = dict(profile.metas)
        logger.info("Update complete...")
        return True

    async def logout(self) -> None:
        """Clear the user state; safe to call repeatedly."""
        logger.info("Clearing user session...")
        auth = self.auth
        if auth is not None:
            # cancels the renewal before credentials are cleared
            await auth.invalidate()
        else:
            for key in (STORE_USERNAME_KEY, STORE_SECRET_KEY, STORE_AUTH_TOKEN_KEY):
                await self.store.delete(key)
        client = self.client
        if client is not None:
            await client.deinitialize()
        server_uris = self.session.get('server_uris')
        has_error = self.session.has_error
        self._auth2fa = None
        self.session.invalidate()
        # the connection survives a logout
        if client is not None:
            self.session.client = client
            self.session.server_uris = server_uris
        self.session.has_error = has_error
        self.session.logged_in = False
        self.session.initialized = True
        logger.info("User session cleared...")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def is_username_unique(self, username: str) -> bool:
        """True when no profile uses the hashed ``username``.

        An unanswered lookup never reports a username as unique.
        """
        if self.client is None:
            logger.error("No ledger client available!")
            return False
        username_hash = self.hash(username)
        result = await WalletBundle.query_all(
            self.client, username_hashes=username_hash, registry=self.registry
        )
        if result.error:
            logger.warning("Cannot check uniqueness of %s...", username_hash)
            return False
        if len(result) > 0:
            logger.info("Found a match for %s...", username_hash)
            return False
        logger.info("No matches found for %s...", username_hash)
        return True

    async def is_username_invited(self, recipient: str) -> bool:
        """True when an invite exists for the hashed ``recipient``."""
        if self.client is None:
            logger.error("No ledger client available!")
            return False
        recipient_hash = self.hash(recipient)
        result = await Invite.query_all(
            self.client,
            filters=[MetaFilter(key='recipientHashedEmail', value=recipient_hash)],
            registry=self.registry,
        )
        return len(result) > 0

"""Ledger Session.

Client-side identity and session manager for ledger-backed applications.
"""
from .version import __version__
from .conf import LedgerSettings
from .exceptions import (
    LedgerSessionError,
    ConfigurationError,
    TransportError,
    AuthError,
    DataIntegrityError,
)
from .identity import IdentityDeriver, generate_bundle_hash, generate_secret
from .endpoints import EndpointProber
from .auth import AuthSession, AuthToken, TokenState
from .data import Profile, SessionData
from .controller import IdentityController

__all__ = (
    "__version__",
    "LedgerSettings",
    "LedgerSessionError",
    "ConfigurationError",
    "TransportError",
    "AuthError",
    "DataIntegrityError",
    "IdentityDeriver",
    "generate_bundle_hash",
    "generate_secret",
    "EndpointProber",
    "AuthSession",
    "AuthToken",
    "TokenState",
    "Profile",
    "SessionData",
    "IdentityController",
)

"""
Ledger Session Configuration — store keys, defaults and validated settings.

Reads settings from environment variables in the format:
    LEDGER_APP_SALT = <salt used for secret and username hashing>
    LEDGER_APP_SLUG = <application / cell identifier>
    LEDGER_SERVER_URIS = <comma separated endpoint URIs>
    LEDGER_2FA_ENABLED = <true|false>

Security Note:
    Never log the salt. Only log type names and endpoint URIs.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("ledger.conf")

# Secret store keys
STORE_SECRET_KEY = 'secret'
STORE_USERNAME_KEY = 'username'
STORE_AUTH_TOKEN_KEY = 'authToken'

# Session data keys
SESSION_ID = 'session_id'
SESSION_KEY = 'bundle'

# Pagination defaults for plural meta queries
PAGINATION_DEFAULTS = {
    'page': 1,
    'rows_per_page': 10,
    'sort_by': 'created_at',
    'descending': True,
}

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def default_types(prefix: str = '') -> dict[str, str]:
    """Build the logical model name -> ledger meta type table.

    Args:
        prefix: Application model prefix for application-owned types.

    Returns:
        Mapping of logical model name to ledger meta type string.
    """
    return {
        'page': 'Page',
        'walletBundle': 'walletBundle',
        'secureMessage': 'SecureMessage',
        'invite': f'{prefix}Invite',
        'role': f'{prefix}Role',
        'community': f'{prefix}Community',
    }


def _split_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(',') if item.strip()]


class LedgerSettings(BaseModel):
    """Validated ledger session configuration."""

    salt: Optional[str] = None
    app_slug: Optional[str] = None
    server_uris: list[str] = Field(default_factory=list)
    two_factor_enabled: bool = False
    token_renewal_margin: float = Field(default=0.0, ge=0)
    probe_timeout: float = Field(default=5.0, gt=0)
    model_prefix: str = ''
    types: dict[str, str] = Field(default_factory=dict)
    strict_types: bool = True
    admins: list[str] = Field(default_factory=list)

    @field_validator("server_uris")
    @classmethod
    def validate_uris(cls, v: list[str]) -> list[str]:
        """Validate endpoint URIs use http(s)."""
        for uri in v:
            if not uri.startswith(("http://", "https://")):
                raise ValueError(f"Unsupported endpoint URI: {uri}")
        return v

    @model_validator(mode="after")
    def fill_default_types(self) -> "LedgerSettings":
        """Use the default type table when none was given."""
        if not self.types:
            self.types = default_types(self.model_prefix)
        return self

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        """Create LedgerSettings by loading values from environment.

        Returns:
            Populated LedgerSettings instance.
        """
        env = os.environ
        settings = cls(
            salt=env.get("LEDGER_APP_SALT") or None,
            app_slug=env.get("LEDGER_APP_SLUG") or None,
            server_uris=_split_list(env.get("LEDGER_SERVER_URIS")),
            two_factor_enabled=(
                env.get("LEDGER_2FA_ENABLED", "").lower() in _TRUE_VALUES
            ),
            token_renewal_margin=float(
                env.get("LEDGER_TOKEN_RENEWAL_MARGIN", 0)
            ),
            probe_timeout=float(env.get("LEDGER_PROBE_TIMEOUT", 5.0)),
            model_prefix=env.get("LEDGER_APP_MODEL_PREFIX", ""),
            strict_types=(
                env.get("LEDGER_STRICT_TYPES", "true").lower() in _TRUE_VALUES
            ),
            admins=_split_list(env.get("LEDGER_APP_ADMINS")),
        )
        logger.debug(
            "Loaded settings: %d endpoint(s), %d type(s), 2FA=%s",
            len(settings.server_uris), len(settings.types),
            settings.two_factor_enabled,
        )
        return settings

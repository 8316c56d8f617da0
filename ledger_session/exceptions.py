"""Error taxonomy for Ledger Session."""


class LedgerSessionError(Exception):
    """Base class for all Ledger Session errors."""


class ConfigurationError(LedgerSessionError, RuntimeError):
    """Missing salt, type mapping or other required setting."""


class TransportError(LedgerSessionError):
    """An endpoint is unreachable or a ledger request failed."""


class AuthError(LedgerSessionError):
    """Token request failed or a second factor did not match."""


class DataIntegrityError(LedgerSessionError):
    """The ledger returned no usable record where one must exist."""

"""Exceptions raised by the digest pipeline."""


class DigestError(Exception):
    """Base class for digest pipeline failures."""


class WindowQueryError(DigestError):
    """Approved tools for a window could not be fetched."""


class RecipientFetchError(DigestError):
    """Mailing list or account recipients could not be fetched."""


class LedgerError(DigestError):
    """The notification ledger could not be read or written."""

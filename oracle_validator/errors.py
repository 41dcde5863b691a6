"""
Oracle Validator error taxonomy.

Fail-closed design:
- Structural errors abort the whole validation, no signature is produced
- Reconciliation errors are collected per claim and reported together
- Transport errors live in oracle_validator.net (FetchError, EgressDeniedError)

Source-unavailable conditions (a price source without data for a claim) are
not exceptions: the claim simply stays pending for the next stage.
"""
from __future__ import annotations

from typing import Any, Sequence


class OracleValidatorError(Exception):
    """Base class for every error raised by the validator."""
    pass


class MalformedTransaction(OracleValidatorError):
    """Raised when transaction bytes are truncated or structurally invalid."""
    pass


class UnexpectedDatumShape(OracleValidatorError):
    """
    Raised when a datum does not have the expected tag or shape.

    Attributes:
        expected: Expected shape name (e.g. "list", "constr 0")
        actual: Shape that was found
    """

    def __init__(self, expected: str, actual: str, context: str = ""):
        self.expected = expected
        self.actual = actual
        self.context = context
        detail = f"expected {expected}, got {actual}"
        if context:
            detail = f"{context}: {detail}"
        super().__init__(detail)


class MetadataUnresolved(OracleValidatorError):
    """Raised when neither CIP-68 nor CIP-26 metadata could be read."""

    def __init__(self, asset_class: Any, reason: str = ""):
        self.asset_class = asset_class
        self.reason = reason
        msg = f"unable to resolve metadata of {asset_class}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class AmbiguousIntent(OracleValidatorError):
    """Raised when a transaction mixes mints, or mints and price updates."""
    pass


class SigningError(OracleValidatorError):
    """Raised when the transaction cannot be signed (key missing or invalid)."""
    pass


class PriceSourceError(OracleValidatorError):
    """Raised when a price source integration itself is broken (not a claim issue)."""
    pass


class InvalidStage(OracleValidatorError):
    """Raised for an unrecognized stage name."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"unrecognized stage '{stage}'")


class InvalidRWAMetadata(OracleValidatorError):
    """Raised when the metadata record of a wrapped asset is missing or malformed."""
    pass


class NotAuthorized(OracleValidatorError):
    """Raised when no secrets are stored for a stage."""
    pass


class SubscriptionStale(OracleValidatorError):
    """Raised when a push subscription could not be synced with every stage."""
    pass


class ReconciliationFailed(OracleValidatorError):
    """
    Raised when one or more price claims could not be reconciled.

    A single error is surfaced as-is, several are joined with "; ".
    """

    def __init__(self, errors: Sequence[Any]):
        self.errors = tuple(errors)
        super().__init__("; ".join(e.message for e in self.errors))

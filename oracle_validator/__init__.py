"""
Oracle Validator.

Checks candidate Cardano price-feed transactions (and reserve-backed RWA
mints) against independent sources before co-signing them.
"""

__version__ = "1.0.0"

from .errors import (
    AmbiguousIntent,
    MalformedTransaction,
    OracleValidatorError,
    ReconciliationFailed,
)
from .ledger.tx import Transaction, decode_tx
from .pipeline import PriceReconciliationPipeline, ReconciliationResult
from .signing import Signature, SigningService

__all__ = [
    "AmbiguousIntent",
    "MalformedTransaction",
    "OracleValidatorError",
    "PriceReconciliationPipeline",
    "ReconciliationFailed",
    "ReconciliationResult",
    "Signature",
    "SigningService",
    "Transaction",
    "decode_tx",
]

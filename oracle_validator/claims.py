"""
Price claim extraction.

Walks the outputs sent to a stage's asset-group address. Each such output
must carry an inline datum holding a list of price entries:

    [assetClass (Constr 0 [policy, name]), count, [num, den], timestamp_ms]

Structure errors (missing datum, datum hash instead of inline datum, outer
value not a list) abort the validation. A malformed entry only produces a
ValidationError for that entry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .errors import MalformedTransaction, UnexpectedDatumShape
from .ledger.assets import AssetClass
from .ledger.datum import Datum, expect_int, expect_list
from .ledger.tx import DatumHash, Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceClaim:
    asset_class: AssetClass
    numerator: int
    denominator: int
    timestamp: int   # ms since epoch

    @property
    def raw_price(self) -> float:
        """Lovelace per smallest unit of the asset."""
        return self.numerator / self.denominator


@dataclass(frozen=True)
class ValidationError:
    subject: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ClaimExtraction:
    claims: Tuple[PriceClaim, ...]
    errors: Tuple[ValidationError, ...]


def decode_price_entry(entry: Datum, context: str) -> PriceClaim:
    """
    Decode one price entry.

    Raises:
        UnexpectedDatumShape: If the entry does not have the expected shape
    """
    fields = expect_list(entry, context)
    if len(fields) != 4:
        raise UnexpectedDatumShape("4 fields", f"{len(fields)} fields", context)

    asset_class = AssetClass.from_datum(fields[0], f"{context} asset class")
    expect_int(fields[1], f"{context} count")

    ratio = expect_list(fields[2], f"{context} price")
    if len(ratio) != 2:
        raise UnexpectedDatumShape("[numerator, denominator]", f"{len(ratio)} items", f"{context} price")
    numerator = expect_int(ratio[0], f"{context} price numerator")
    denominator = expect_int(ratio[1], f"{context} price denominator")
    if denominator <= 0:
        raise UnexpectedDatumShape("positive denominator", str(denominator), f"{context} price")

    timestamp = expect_int(fields[3], f"{context} timestamp")

    return PriceClaim(asset_class, numerator, denominator, timestamp)


def extract_claims(tx: Transaction, asset_group_address: str) -> ClaimExtraction:
    """
    Extract all price claims from a transaction.

    Raises:
        MalformedTransaction: If an asset-group output has no inline datum
        UnexpectedDatumShape: If an asset-group datum is not a list
    """
    claims: Dict[AssetClass, PriceClaim] = {}
    errors: List[ValidationError] = []

    for output in tx.outputs_at(asset_group_address):
        if output.datum is None:
            raise MalformedTransaction("asset group output missing datum")
        if isinstance(output.datum, DatumHash):
            raise MalformedTransaction("asset group output doesn't have an inline datum")

        entries = expect_list(output.datum.data, "asset group datum")

        for i, entry in enumerate(entries):
            context = f"price entry {i}"
            try:
                claim = decode_price_entry(entry, context)
            except UnexpectedDatumShape as e:
                logger.warning("Skipping malformed %s: %s", context, e)
                errors.append(ValidationError(context, f"invalid {e}"))
                continue

            if claim.asset_class in claims:
                errors.append(ValidationError(
                    str(claim.asset_class),
                    f"duplicate price entry for {claim.asset_class}",
                ))
                continue

            claims[claim.asset_class] = claim

    logger.debug("Extracted %d price claims (%d entry errors)", len(claims), len(errors))
    return ClaimExtraction(tuple(claims.values()), tuple(errors))

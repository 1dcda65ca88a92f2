"""
Transfer Detector

Finds transaction pairs across statements of the user's own accounts that
are the two sides of one movement of money.

A pair (source, target) is a candidate when:
1. The two transactions belong to different accounts
2. Money leaves the source and arrives in the target
3. The magnitudes match (exactly, within a small tolerance, or within the
   cross-currency tolerance after conversion)
4. The posting dates are at most `max_days_difference` apart

Direction is read from the account holder's side: on a credit card
statement a negative amount is a payment, i.e. money arriving in the card
account, so credit card amounts are negated before pairing.

Confidence, strongest first:
- HIGH: same currency, identical minor-unit amount, same day
- MEDIUM: same currency, amount within tolerance, inside the window
- LOW: different currencies, amount within tolerance after conversion

DESIGN DECISION: Assignment is greedy, not globally optimal. All candidates
are ordered by (confidence, source position, target position) and taken in
that order; a transaction already taken is never paired again.
"""

from decimal import Decimal
from typing import Mapping, Optional, Sequence

import structlog

from statement_ledger.config import TransferSettings, get_settings
from statement_ledger.models.money import ZERO, to_minor_units
from statement_ledger.models.statement import ParsedStatement
from statement_ledger.models.transfer import DetectedTransfer, TransferConfidence, TransferLeg

logger = structlog.get_logger(__name__)

_RATE_PLACES = Decimal("0.000001")


class _Candidate:
    """A scored (source, target) pairing waiting for assignment."""

    def __init__(
        self,
        source_pos: int,
        target_pos: int,
        confidence: TransferConfidence,
        days: int,
        rate: Optional[Decimal],
    ):
        self.source_pos = source_pos
        self.target_pos = target_pos
        self.confidence = confidence
        self.days = days
        self.rate = rate

    @property
    def order(self) -> tuple[int, int, int]:
        return (self.confidence.rank, self.source_pos, self.target_pos)


def _collect_legs(
    statements: Sequence[ParsedStatement],
    min_amount: Decimal,
) -> list[tuple[TransferLeg, Decimal]]:
    """Every eligible transaction as a leg, with its direction-normalized flow."""
    legs = []
    for index, statement in enumerate(statements):
        if not statement.account.account_number:
            continue
        sign = -1 if statement.is_credit_card_statement else 1
        for tx in statement.transactions:
            if abs(tx.amount) < min_amount:
                continue
            leg = TransferLeg(
                account_hash=statement.account_hash,
                masked_account_number=statement.account.masked_number,
                currency_code=statement.currency_code,
                statement_index=index,
                transaction=tx,
            )
            legs.append((leg, tx.amount * sign))
    return legs


def _rate_for(currency_code: str, exchange_rates: Mapping[str, Decimal]) -> Decimal:
    """Units of `currency_code` per unit of the common base. Unknown currencies count as 1."""
    rate = exchange_rates.get(currency_code.upper())
    if rate is None or rate <= 0:
        return Decimal(1)
    return Decimal(rate)


def _score(
    source: TransferLeg,
    target: TransferLeg,
    days: int,
    settings: TransferSettings,
    exchange_rates: Mapping[str, Decimal],
) -> Optional[tuple[TransferConfidence, Optional[Decimal]]]:
    """Confidence and inferred rate for a pair, or None when amounts do not match."""
    source_amount = abs(source.transaction.amount)
    target_amount = abs(target.transaction.amount)

    if source.currency_code == target.currency_code:
        currency = source.currency_code
        if to_minor_units(source_amount, currency) == to_minor_units(target_amount, currency):
            confidence = TransferConfidence.HIGH if days == 0 else TransferConfidence.MEDIUM
            return confidence, None
        tolerance = max(source_amount, target_amount) * settings.amount_tolerance_ratio
        if abs(source_amount - target_amount) <= tolerance:
            return TransferConfidence.MEDIUM, None
        return None

    source_in_base = source_amount / _rate_for(source.currency_code, exchange_rates)
    target_in_base = target_amount / _rate_for(target.currency_code, exchange_rates)
    average = (source_in_base + target_in_base) / 2
    if average == ZERO:
        return None
    if abs(source_in_base - target_in_base) / average > settings.cross_currency_tolerance:
        return None
    rate = (target_amount / source_amount).quantize(_RATE_PLACES)
    return TransferConfidence.LOW, rate


def detect_transfers(
    statements: Sequence[ParsedStatement],
    exchange_rates: Optional[Mapping[str, Decimal]] = None,
    settings: Optional[TransferSettings] = None,
) -> list[DetectedTransfer]:
    """
    Detect transfers between the accounts of a batch of statements.

    Args:
        statements: Parsed statements imported together
        exchange_rates: Currency code -> units per common base currency,
                        used only for cross-currency pairs
        settings: Matching thresholds. Defaults to the configured values.

    Returns:
        Transfers ordered by confidence (strongest first), then source date.
        Fewer than two statements never produce transfers.
    """
    if len(statements) < 2:
        return []

    settings = settings or get_settings().transfers
    exchange_rates = {k.upper(): v for k, v in (exchange_rates or {}).items()}

    legs = _collect_legs(statements, settings.min_amount)
    sources = [pos for pos, (_, flow) in enumerate(legs) if flow < 0]
    targets = [pos for pos, (_, flow) in enumerate(legs) if flow > 0]

    candidates: list[_Candidate] = []
    for source_pos in sources:
        source = legs[source_pos][0]
        for target_pos in targets:
            target = legs[target_pos][0]
            if source.account_hash == target.account_hash:
                continue
            days = abs((target.transaction.posted_date - source.transaction.posted_date).days)
            if days > settings.max_days_difference:
                continue
            scored = _score(source, target, days, settings, exchange_rates)
            if scored is None:
                continue
            confidence, rate = scored
            candidates.append(_Candidate(source_pos, target_pos, confidence, days, rate))

    candidates.sort(key=lambda c: c.order)

    used: set[int] = set()
    transfers: list[DetectedTransfer] = []
    for candidate in candidates:
        if candidate.source_pos in used or candidate.target_pos in used:
            continue
        used.add(candidate.source_pos)
        used.add(candidate.target_pos)
        source = legs[candidate.source_pos][0]
        target = legs[candidate.target_pos][0]
        transfers.append(DetectedTransfer(
            id=f"transfer-{candidate.source_pos}-{candidate.target_pos}",
            source=source,
            target=target,
            confidence=candidate.confidence,
            is_cross_currency=source.currency_code != target.currency_code,
            exchange_rate=candidate.rate,
            days_difference=candidate.days,
        ))

    transfers.sort(key=lambda t: (t.confidence.rank, t.source.transaction.posted_date))

    logger.debug(
        "transfers_detected",
        statements=len(statements),
        candidates=len(candidates),
        transfers=len(transfers),
    )
    return transfers


def summarize_transfers(transfers: Sequence[DetectedTransfer]) -> dict[str, int]:
    """Counts for display and audit."""
    return {
        "total": len(transfers),
        "high_confidence": sum(1 for t in transfers if t.confidence == TransferConfidence.HIGH),
        "medium_confidence": sum(1 for t in transfers if t.confidence == TransferConfidence.MEDIUM),
        "low_confidence": sum(1 for t in transfers if t.confidence == TransferConfidence.LOW),
        "cross_currency": sum(1 for t in transfers if t.is_cross_currency),
        "same_currency": sum(1 for t in transfers if not t.is_cross_currency),
    }

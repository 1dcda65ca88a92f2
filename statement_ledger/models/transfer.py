"""
Transfer Models

A detected transfer pairs a transaction leaving one of the user's accounts
with the matching transaction arriving in another.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from statement_ledger.models.statement import RawTransaction


class TransferConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key, strongest first."""
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    TransferConfidence.HIGH: 0,
    TransferConfidence.MEDIUM: 1,
    TransferConfidence.LOW: 2,
}


class TransferLeg(BaseModel):
    """One side of a transfer."""

    account_hash: str
    masked_account_number: str
    currency_code: str
    statement_index: int = Field(..., ge=0, description="Position of the statement in the batch")
    transaction: RawTransaction

    @property
    def key(self) -> str:
        return f"{self.account_hash}:{self.transaction.external_id}"


class DetectedTransfer(BaseModel):
    """Money moving between two of the user's own accounts."""

    id: str
    source: TransferLeg = Field(..., description="Side the money left")
    target: TransferLeg = Field(..., description="Side the money arrived in")
    confidence: TransferConfidence
    is_cross_currency: bool = False
    exchange_rate: Optional[Decimal] = Field(
        default=None,
        description="Inferred target/source rate for cross-currency transfers"
    )
    days_difference: int = Field(..., ge=0)

    def involves(self, account_hash: str, external_id: str) -> bool:
        key = f"{account_hash}:{external_id}"
        return key in (self.source.key, self.target.key)

"""
Run Result Models

Overall outcome of a run, as decided when the outer transaction is closed.
"""

from enum import Enum

from pydantic import BaseModel, Field


class TransactionOutcome(str, Enum):
    """What happened to the outer transaction at finalize time."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    NO_TRANSACTION = "no_transaction"


class RunOutcome(BaseModel):
    """Result of finalizing a run."""

    transaction: TransactionOutcome = Field(
        ..., description="Whether the outer transaction was committed"
    )
    failed_count: int = Field(0, ge=0, description="Chunks that failed in the run")

    @property
    def committed(self) -> bool:
        return self.transaction == TransactionOutcome.COMMITTED

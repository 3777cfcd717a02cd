import uuid
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


class ExpenseCategory(str, Enum):
    food = "Food"
    travel = "Travel"
    shopping = "Shopping"
    entertainment = "Entertainment"
    utilities = "Utilities"
    other = "Other"


def unique_participants(participants: List[str]) -> List[str]:
    """Drop repeated ids, keeping the first occurrence of each."""
    return list(dict.fromkeys(participants))


class Expense(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    payer: str
    amount: Decimal = Field(..., ge=0)
    participants: List[str] = Field(..., min_length=1)
    category: ExpenseCategory = ExpenseCategory.other
    description: Optional[str] = Field(None, max_length=100)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def share(self) -> Decimal:
        """Per-person portion of this expense."""
        return self.amount / Decimal(len(unique_participants(self.participants)))


class DebtSummary(BaseModel):
    member_id: str
    total_paid: Decimal
    total_share: Decimal
    net_balance: Decimal

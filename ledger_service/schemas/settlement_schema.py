import uuid
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SettlementKind(str, Enum):
    individual = "individual"
    group = "group"


class SettlementStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset({SettlementStatus.completed, SettlementStatus.cancelled})


class Settlement(BaseModel):
    """
    Settlement record. Build it through ``settlement_service.create_settlement``,
    which enforces that individual settlements name both parties and a positive
    amount and that group settlements name none.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    group_id: str
    kind: SettlementKind
    from_member_id: Optional[str] = None
    to_member_id: Optional[str] = None
    amount: Optional[Decimal] = None
    status: SettlementStatus = SettlementStatus.pending
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class OptimizedSettlement(BaseModel):
    from_member_id: str
    to_member_id: str
    amount: Decimal

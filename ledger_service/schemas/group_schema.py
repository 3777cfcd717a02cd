from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from ledger_service.schemas.settlement_schema import OptimizedSettlement


class GroupMemberOut(BaseModel):
    member_id: str
    name: str
    balance: Decimal


class GroupOut(BaseModel):
    id: str
    name: str = Field(..., max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    created_by: str
    settled: bool
    members: List[GroupMemberOut] = []
    expense_ids: List[str] = []
    created_at: datetime


class MemberRemoval(BaseModel):
    """Outcome of removing a member; ``stranded`` flags a non-zero balance left behind."""
    member_id: str
    balance: Decimal
    stranded: bool


class MemberBalanceLine(BaseModel):
    member_id: str
    name: str
    email: Optional[str] = None
    balance: Decimal
    summary: str
    pays: List[OptimizedSettlement] = []
    receives: List[OptimizedSettlement] = []


class SettlementNotification(BaseModel):
    group_id: str
    group_name: str
    settlement_id: Optional[str] = None
    members: List[MemberBalanceLine] = []

"""
Settlement notification messages.

Builds the per-member balance summary that the external notification service
renders and delivers, and hands it over through RabbitMQ. Delivery itself
(email templates, SMTP credentials) lives entirely in that service.
"""

import logging
from decimal import Decimal
from typing import Optional
from ledger_service.core.config import settings
from ledger_service.models.group import Group
from ledger_service.rabbitmq.producer import RabbitMQProducer, get_rabbitmq_producer
from ledger_service.schemas.group_schema import MemberBalanceLine, SettlementNotification
from ledger_service.schemas.settlement_schema import OptimizedSettlement, Settlement
from ledger_service.services.expense_service import get_debt_summary
from ledger_service.utils.balance_ledger import round_decimal
from ledger_service.utils.min_cash_flow import plan_transfers

logger = logging.getLogger(__name__)


def describe_balance(balance: Decimal, tolerance: Optional[Decimal] = None) -> str:
    """
    One-line summary of a balance: "owes X", "is owed X" or "settled up".

    Example:
        >>> describe_balance(Decimal("-45"))
        'owes 45.00'
    """
    tolerance = settings.LEDGER_TOLERANCE if tolerance is None else tolerance
    if balance > tolerance:
        return f"is owed {round_decimal(balance, settings.LEDGER_PRECISION)}"
    if balance < -tolerance:
        return f"owes {round_decimal(balance.copy_negate(), settings.LEDGER_PRECISION)}"
    return "settled up"


def build_settlement_notification(group: Group, settlement: Optional[Settlement] = None) -> SettlementNotification:
    """
    Build the balance summary for every member in the group's ledger.

    Each line carries the member's balance and the planned transfers they
    pay or receive, so the notifier never recomputes balances itself.
    """
    balances = {debt.member_id: debt.net_balance for debt in get_debt_summary(group)}
    transfers = [
        OptimizedSettlement(from_member_id=t["from"], to_member_id=t["to"], amount=t["amount"])
        for t in plan_transfers(balances)
    ]

    lines = []
    for member_id, balance in balances.items():
        member = group.get_member(member_id)
        lines.append(MemberBalanceLine(
            member_id=member_id,
            name=member.name if member else member_id,
            email=member.email if member else None,
            balance=round_decimal(balance, settings.LEDGER_PRECISION),
            summary=describe_balance(balance),
            pays=[t for t in transfers if t.from_member_id == member_id],
            receives=[t for t in transfers if t.to_member_id == member_id]
        ))

    return SettlementNotification(
        group_id=group.id,
        group_name=group.name,
        settlement_id=settlement.id if settlement else None,
        members=lines
    )


def notify_group_settlement(
    group: Group,
    settlement: Optional[Settlement] = None,
    producer: Optional[RabbitMQProducer] = None
) -> bool:
    """Hand the group's settlement summary to the notification service"""
    notification = build_settlement_notification(group, settlement)

    missing_email = [line.member_id for line in notification.members if not line.email]
    if missing_email:
        logger.warning(f"Members without contact address in group {group.id}: {missing_email}")

    producer = producer or get_rabbitmq_producer()
    return producer.publish_settlement_notification(notification.model_dump(mode="json"))

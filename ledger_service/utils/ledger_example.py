"""
Example walkthrough of the ledger engine.

Builds a small group, records expenses, prints balances and the planned
transfers, then runs a settlement through its lifecycle.

Run this module directly to see the engine in action:
    python -m ledger_service.utils.ledger_example
"""

import logging
from decimal import Decimal
from ledger_service.core.config import settings
from ledger_service.schemas.expense_schema import Expense, ExpenseCategory
from ledger_service.schemas.member_schema import Member
from ledger_service.schemas.settlement_schema import SettlementKind, SettlementStatus
from ledger_service.services.group_service import create_group
from ledger_service.services.notification_service import build_settlement_notification, describe_balance
from ledger_service.services.settlement_service import (
    create_settlement, finalize_group_settlement, transition_settlement
)
from ledger_service.utils.min_cash_flow import plan_transfers_detailed


def run_example_trip():
    """Three friends share a trip; one leaves early."""
    print("\n" + "=" * 70)
    print("Example 1: Shared Trip")
    print("=" * 70)

    alice = Member(id="A", name="Alice", email="alice@example.com")
    bob = Member(id="B", name="Bob", email="bob@example.com")
    carol = Member(id="C", name="Carol")

    group = create_group("Goa trip", created_by=alice, members=[bob, carol])
    group.add_expense(Expense(payer="A", amount=Decimal("90"), participants=["A", "B", "C"],
                              category=ExpenseCategory.travel, description="Cab"))
    group.add_expense(Expense(payer="B", amount=Decimal("30"), participants=["B", "C"],
                              category=ExpenseCategory.food, description="Lunch"))

    print("\nNet Balances:")
    for member_id, balance in group.balances.items():
        print(f"  {group.get_member(member_id).name}: {describe_balance(balance)}")

    transfers, logs = plan_transfers_detailed(dict(group.balances))
    print("\nDetailed Workflow:")
    print("\n".join(logs))

    print("\nPlanned Transfers:")
    for i, transfer in enumerate(transfers, 1):
        print(f"  {i}. {transfer['from']} → {transfer['to']}: {transfer['amount']}")

    payment = create_settlement(group, SettlementKind.individual, created_by="C",
                                from_member_id="C", to_member_id="A", amount=Decimal("45"))
    transition_settlement(payment, SettlementStatus.completed, actor="C")
    print(f"\nSettlement {payment.id}: {payment.status.value}")

    settle_up = create_settlement(group, SettlementKind.group, created_by="A")
    finalize_group_settlement(group, actor="A")
    notification = build_settlement_notification(group, settle_up)
    print(f"\nGroup settled: {group.settled}")
    for line in notification.members:
        print(f"  {line.name}: {line.summary}")
    print("=" * 70)


def run_example_edge_cases():
    """Duplicate participants and a member removed with an open balance."""
    print("\n" + "=" * 70)
    print("Example 2: Edge Cases")
    print("=" * 70)

    alice = Member(id="A", name="Alice")
    bob = Member(id="B", name="Bob")
    group = create_group("Flat", created_by=alice, members=[bob])

    group.add_expense(Expense(payer="A", amount=Decimal("100"), participants=["A", "B", "B"]))
    print(f"\n1. Duplicate participant counted once: {dict(group.balances)}")

    removal = group.remove_member("B", actor="A")
    print(f"2. Removed B, stranded={removal.stranded}, balance={removal.balance}")
    print(f"   Stranded balances: {dict(group.stranded_balances)}")
    print("=" * 70)


def main():
    """Run all examples."""
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    run_example_trip()
    run_example_edge_cases()
    print("\nAll examples completed successfully!\n")


if __name__ == "__main__":
    main()

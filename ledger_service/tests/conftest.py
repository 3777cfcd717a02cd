"""
Pytest configuration and fixtures for ledger_service tests.
"""
import pytest
from decimal import Decimal
from typing import Dict, List

from ledger_service.models.group import Group
from ledger_service.schemas.expense_schema import Expense
from ledger_service.schemas.member_schema import Member


@pytest.fixture
def alice():
    return Member(id="A", name="Alice", email="alice@example.com")


@pytest.fixture
def bob():
    return Member(id="B", name="Bob", email="bob@example.com")


@pytest.fixture
def carol():
    return Member(id="C", name="Carol", email="carol@example.com")


@pytest.fixture
def group(alice, bob, carol):
    """Group of A, B and C created by A, with no expenses."""
    return Group(name="Trip", created_by=alice, members=[bob, carol])


@pytest.fixture
def sample_expenses():
    """Sample expenses for testing."""
    return [
        Expense(payer="A", amount=Decimal("120"), participants=["A", "B", "C"]),
        Expense(payer="B", amount=Decimal("60"), participants=["B", "C"]),
        Expense(payer="C", amount=Decimal("40"), participants=["A", "C", "D"]),
    ]


@pytest.fixture
def sample_balances():
    """Sample balances for testing."""
    return {
        "A": Decimal("66.67"),
        "B": Decimal("-10.00"),
        "C": Decimal("-43.33"),
        "D": Decimal("-13.34")
    }


def verify_settlements_settle_debts(balances: Dict[str, Decimal], settlements: List[Dict]) -> None:
    """
    Helper to verify transfers settle all balances.

    Paying reduces what a debtor owes, receiving reduces what a creditor is
    owed: final balance = initial_balance - received + paid.
    """
    settlement_totals = {}

    for settlement in settlements:
        from_member = settlement["from"]
        to_member = settlement["to"]
        amount = settlement["amount"]

        settlement_totals[from_member] = settlement_totals.get(from_member, Decimal("0")) - amount
        settlement_totals[to_member] = settlement_totals.get(to_member, Decimal("0")) + amount

    for member, initial_balance in balances.items():
        if abs(initial_balance) <= Decimal("0.01"):
            continue

        settlement_total = settlement_totals.get(member, Decimal("0"))
        final_balance = initial_balance - settlement_total

        assert abs(final_balance) <= Decimal("0.01"), \
            f"Member {member} not settled: initial={initial_balance}, " \
            f"settlement_total={settlement_total}, final={final_balance}"

import logging
from typing import Dict, List
from decimal import Decimal
from pydantic import ValidationError
from ledger_service.core.exceptions import InvalidExpense
from ledger_service.models.group import Group
from ledger_service.schemas.expense_schema import DebtSummary, Expense
from ledger_service.schemas.settlement_schema import OptimizedSettlement
from ledger_service.utils.balance_ledger import compute_balances, summarize_debts

logger = logging.getLogger(__name__)


def build_expense(**fields) -> Expense:
    """Validate raw expense fields into an Expense"""
    try:
        return Expense(**fields)
    except ValidationError as e:
        raise InvalidExpense(f"Invalid expense: {e}") from e


def get_debt_summary(group: Group) -> List[DebtSummary]:
    """
    Calculate paid/owed/net figures for every member in the group's ledger.

    Current members come first; removed members still referenced by an
    expense follow, so the summary always sums to zero.
    """
    member_ids, expenses = group.ledger_snapshot()
    return summarize_debts(member_ids, expenses)


def optimize_settlements(debt_summary: List[DebtSummary]) -> List[OptimizedSettlement]:
    """
    Optimize settlements using the Min-Cash-Flow algorithm.

    Transforms the debt summary into a balance map and applies the greedy
    largest-debtor/largest-creditor matching.

    Args:
        debt_summary: List of DebtSummary objects containing member balances

    Returns:
        List of OptimizedSettlement objects representing minimal transfers
    """
    from ledger_service.utils.min_cash_flow import plan_transfers

    balances = {debt.member_id: debt.net_balance for debt in debt_summary}

    transfers = plan_transfers(balances)

    return [
        OptimizedSettlement(
            from_member_id=transfer["from"],
            to_member_id=transfer["to"],
            amount=transfer["amount"]
        )
        for transfer in transfers
    ]


def calculate_balances_from_expenses(group: Group) -> Dict[str, Decimal]:
    """
    Recalculate balances directly from the group's expenses.

    Bypasses the group's cached balances; useful for validating that the
    cache still matches the ledger. Removed members still referenced by an
    expense are included after the current members.
    """
    member_ids, expenses = group.ledger_snapshot()
    return compute_balances(member_ids, expenses)

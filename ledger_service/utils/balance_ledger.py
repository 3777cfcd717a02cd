"""
Balance Ledger Module

Folds a group's expenses into a signed net balance per member.

Net balance = total_paid - total_share
- Positive balance: member is owed money (creditor)
- Negative balance: member owes money (debtor)

Each expense credits its full amount to the payer and debits an equal share
from every distinct participant, the payer included when the payer also takes
part. A payer who is also a participant therefore nets ``amount - share``.

Shares are computed with Decimal division in a context widened to the size of the
amounts (see ``ledger_context``); nothing is rounded to cents inside the fold,
so the balances of a group sum to zero far within the tolerance.

Example Usage:
    from ledger_service.utils.balance_ledger import compute_balances

    expenses = [
        Expense(payer="A", amount=Decimal("90"), participants=["A", "B", "C"]),
        Expense(payer="B", amount=Decimal("30"), participants=["B", "C"]),
    ]
    compute_balances(["A", "B", "C"], expenses)
    # {'A': Decimal('60'), 'B': Decimal('-15'), 'C': Decimal('-45')}
"""

import logging
from decimal import Context, Decimal, InvalidOperation, getcontext, localcontext
from typing import Dict, Iterable, List, Optional, Tuple

from ledger_service.core.config import settings
from ledger_service.core.exceptions import InvalidExpense, UnbalancedLedger
from ledger_service.schemas.expense_schema import DebtSummary, Expense, unique_participants

logger = logging.getLogger(__name__)

# Digits kept below the finer of the tolerance and the smallest amount
_GUARD_DIGITS = 12


def ledger_context(values: Iterable[Decimal], floor: Decimal) -> Context:
    """
    Decimal context wide enough to add up ``values`` down to ``floor``.

    The default context keeps 28 significant digits, which drops whole units
    from amounts around 1e27. The returned context covers the digits between
    the largest possible total of ``values`` and the finer of ``floor`` and
    their smallest exponent, plus guard digits, so an equal split of any
    amount rounds far below the tolerance. It is never narrower than the
    current context.

    Example:
        >>> ledger_context([Decimal("1e27")], Decimal("0.01")).prec
        43
    """
    context = getcontext().copy()
    values = [value for value in values if value and value.is_finite()]
    if not values:
        return context

    top = max(value.adjusted() for value in values) + len(str(len(values))) + 1
    bottom = min(min(value.as_tuple().exponent for value in values), floor.adjusted())
    context.prec = max(context.prec, top - bottom + _GUARD_DIGITS)
    return context


def round_decimal(value: Decimal, precision: Decimal = Decimal('0.01')) -> Decimal:
    """
    Round a Decimal value to the specified precision.

    Args:
        value: The Decimal value to round
        precision: The precision to round to (default: 0.01 for cents)

    Returns:
        Rounded Decimal value (ROUND_HALF_EVEN, the Decimal default)

    Example:
        >>> round_decimal(Decimal("43.333333"), Decimal("0.01"))
        Decimal('43.33')
    """
    with localcontext(ledger_context([value], precision)):
        return value.quantize(precision)


def validate_balance_sum(balances: Dict[str, Decimal], tolerance: Decimal = Decimal('0.01')) -> None:
    """
    Validate that the sum of all balances is approximately zero.

    Every unit paid is reallocated across participants, so a correct ledger
    neither creates nor destroys money.

    Raises:
        UnbalancedLedger: If the sum of balances exceeds the tolerance
            (a ValueError as well as a LedgerError)
    """
    with localcontext(ledger_context(balances.values(), tolerance)):
        total = sum(balances.values(), Decimal('0'))
        unbalanced = abs(total) > tolerance
    if unbalanced:
        raise UnbalancedLedger(
            f"Balances not zero-sum: total={total}, tolerance={tolerance}. "
            f"This indicates unbalanced expense data."
        )


def _expense_amount(expense: Expense) -> Decimal:
    amount = getattr(expense, "amount", None)
    if amount is None:
        raise InvalidExpense(f"Expense {getattr(expense, 'id', '?')} has no amount")
    try:
        amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation:
        raise InvalidExpense(f"Expense {getattr(expense, 'id', '?')} has a non-numeric amount: {amount!r}")
    if not amount.is_finite() or amount < 0:
        raise InvalidExpense(f"Expense {getattr(expense, 'id', '?')} has an invalid amount: {amount}")
    return amount


def _expense_participants(expense: Expense, members: Dict[str, None]) -> Tuple[str, List[str]]:
    payer = getattr(expense, "payer", None)
    participants = unique_participants(getattr(expense, "participants", None) or [])

    if not participants:
        raise InvalidExpense(f"Expense {expense.id} has no participants")
    if payer not in members:
        raise InvalidExpense(f"Payer {payer} of expense {expense.id} is not a member of this group")

    unknown = [participant for participant in participants if participant not in members]
    if unknown:
        raise InvalidExpense(f"Participants {unknown} of expense {expense.id} are not members of this group")

    return payer, participants


def _fold_expenses(
    members: Iterable[str],
    expenses: Iterable[Expense],
    floor: Decimal
) -> Tuple[Dict[str, Decimal], Dict[str, Decimal], Context]:
    # dict keeps member order, which fixes the output order
    member_ids: Dict[str, None] = dict.fromkeys(members)
    entries = []
    for expense in expenses:
        amount = _expense_amount(expense)
        payer, participants = _expense_participants(expense, member_ids)
        entries.append((amount, payer, participants))

    context = ledger_context([amount for amount, _, _ in entries], floor)
    paid = {member_id: Decimal('0') for member_id in member_ids}
    owed = {member_id: Decimal('0') for member_id in member_ids}

    with localcontext(context):
        for amount, payer, participants in entries:
            share = amount / Decimal(len(participants))
            paid[payer] += amount
            for participant in participants:
                owed[participant] += share

    return paid, owed, context


def compute_balances(
    members: Iterable[str],
    expenses: Iterable[Expense],
    tolerance: Optional[Decimal] = None
) -> Dict[str, Decimal]:
    """
    Calculate the net balance of every member from a set of expenses.

    Members without any expense activity appear with a zero balance.
    Repeated participant ids are counted once.

    Args:
        members: Member ids of the group, in display order
        expenses: Expenses to fold, in a stable order
        tolerance: Allowed deviation of the balance sum from zero

    Returns:
        Dictionary mapping member_id -> net_balance (Decimal), ordered like ``members``

    Raises:
        InvalidExpense: If an expense has a missing, negative or non-numeric amount,
            no participants, or references a payer/participant outside ``members``
        UnbalancedLedger: If the folded balances do not sum to zero
    """
    tolerance = settings.LEDGER_TOLERANCE if tolerance is None else tolerance
    paid, owed, context = _fold_expenses(members, expenses, tolerance)

    with localcontext(context):
        balances = {member_id: paid[member_id] - owed[member_id] for member_id in paid}

    try:
        validate_balance_sum(balances, tolerance)
    except UnbalancedLedger as e:
        logger.error(f"Ledger conservation violated for {len(balances)} members: {e.detail}")
        raise

    logger.debug(f"Computed balances for {len(balances)} members")
    return balances


def summarize_debts(members: Iterable[str], expenses: Iterable[Expense]) -> List[DebtSummary]:
    """Break each member's balance into what they paid and what they owe."""
    paid, owed, context = _fold_expenses(members, expenses, settings.LEDGER_TOLERANCE)
    with localcontext(context):
        return [
            DebtSummary(
                member_id=member_id,
                total_paid=paid[member_id],
                total_share=owed[member_id],
                net_balance=paid[member_id] - owed[member_id]
            )
            for member_id in paid
        ]

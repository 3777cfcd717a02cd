"""
Min-Cash-Flow Settlement Planner

This module turns a balance mapping into the smallest set of pairwise transfers
that zeroes every balance (debt simplification).

The algorithm works by:
1. Separating members into creditors (balance > tolerance) and debtors
   (balance < -tolerance); near-zero balances are ignored
2. Repeatedly matching the largest debtor with the largest creditor
3. Transferring the minimum of the two amounts and re-queueing whichever side
   still has more than the tolerance left
4. Breaking ties between equal amounts by ascending member id, so the output is
   reproducible

Both queues are heaps, so every step re-selects the current largest debtor and
creditor even after a partial transfer.

Time Complexity: O(n log n)
Space Complexity: O(n)

Transfers are advisory: planning never mutates a balance. Recording that a
transfer happened is done through a Settlement.

Example Usage:
    from ledger_service.utils.min_cash_flow import plan_transfers

    plan_transfers({"X": Decimal("30"), "Y": Decimal("20"), "Z": Decimal("-50")})
    # [{"from": "Z", "to": "X", "amount": Decimal("30.00")},
    #  {"from": "Z", "to": "Y", "amount": Decimal("20.00")}]
"""

import heapq
import logging
from decimal import Decimal, localcontext
from typing import Dict, List, Optional, Tuple

from ledger_service.core.config import settings
from ledger_service.utils.balance_ledger import ledger_context, round_decimal, validate_balance_sum

logger = logging.getLogger(__name__)


def _build_queues(
    balances: Dict[str, Decimal],
    tolerance: Decimal
) -> Tuple[List[Tuple[Decimal, str]], List[Tuple[Decimal, str]]]:
    # Amounts are negated so heapq pops the largest first; equal amounts fall
    # back to ascending member id.
    creditors = [(-balance, member_id) for member_id, balance in balances.items() if balance > tolerance]
    debtors = [(balance, member_id) for member_id, balance in balances.items() if balance < -tolerance]
    heapq.heapify(creditors)
    heapq.heapify(debtors)
    return creditors, debtors


def _plan(
    balances: Dict[str, Decimal],
    tolerance: Decimal,
    max_iterations: int,
    precision: Decimal,
    logs: Optional[List[str]] = None
) -> List[Dict]:
    def note(message: str) -> None:
        if logs is not None:
            logs.append(message)

    if not balances:
        note("No balances provided. Returning empty transfers.")
        return []

    if len(balances) == 1:
        note("Only one member. No transfers needed.")
        return []

    validate_balance_sum(balances, tolerance)
    note(f"Balance validation passed (sum within tolerance {tolerance})")

    # Negation and remainders are exact only in a context sized to the balances
    with localcontext(ledger_context(balances.values(), min(tolerance, precision))):
        creditors, debtors = _build_queues(balances, tolerance)
        note(f"Creditors (to receive): {sorted((m, -a) for a, m in creditors)}")
        note(f"Debtors (to pay): {sorted((m, -a) for a, m in debtors)}")

        if not creditors or not debtors:
            note("No creditors or no debtors. No transfers needed.")
            return []

        transfers = []
        iterations = 0

        while creditors and debtors:
            iterations += 1

            if iterations > max_iterations:
                raise RuntimeError(
                    f"Settlement loop exceeded max_iterations ({max_iterations}). "
                    f"This may indicate malformed input or rounding issues."
                )

            neg_credit, creditor_id = heapq.heappop(creditors)
            neg_debt, debtor_id = heapq.heappop(debtors)
            credit_amount, debt_amount = -neg_credit, -neg_debt

            transfer_amount = min(credit_amount, debt_amount)
            transfers.append({
                "from": debtor_id,
                "to": creditor_id,
                "amount": round_decimal(transfer_amount, precision)
            })
            note(f"Step {iterations}: {debtor_id} (debt: {debt_amount}) pays "
                 f"{creditor_id} (credit: {credit_amount}) {round_decimal(transfer_amount, precision)}")

            credit_amount -= transfer_amount
            debt_amount -= transfer_amount

            if credit_amount > tolerance:
                heapq.heappush(creditors, (-credit_amount, creditor_id))
            else:
                note(f"  {creditor_id} fully settled")
            if debt_amount > tolerance:
                heapq.heappush(debtors, (-debt_amount, debtor_id))
            else:
                note(f"  {debtor_id} fully settled")

    note(f"Completed in {iterations} iterations with {len(transfers)} transfers")
    logger.debug(f"Planned {len(transfers)} transfers for {len(balances)} balances")
    return transfers


def plan_transfers(
    balances: Dict[str, Decimal],
    tolerance: Optional[Decimal] = None,
    max_iterations: Optional[int] = None
) -> List[Dict]:
    """
    Minimize the number of transfers needed to settle all balances.

    Edge Cases Handled:
    - Empty input or a single member: returns []
    - All balances within tolerance of zero: returns []
    - Sum of balances != 0 (beyond tolerance): raises UnbalancedLedger (a ValueError)
    - max_iterations exceeded: raises RuntimeError

    Args:
        balances: Dictionary mapping member_id -> net_balance
        tolerance: Balances within this distance of zero are ignored
            (default: settings.LEDGER_TOLERANCE)
        max_iterations: Guard against runaway loops
            (default: settings.PLANNER_MAX_ITERATIONS)

    Returns:
        Ordered list of transfers: [{"from": str, "to": str, "amount": Decimal}, ...]

    Example:
        >>> plan_transfers({"A": Decimal("60"), "B": Decimal("-15"), "C": Decimal("-45")})
        [{'from': 'C', 'to': 'A', 'amount': Decimal('45.00')},
         {'from': 'B', 'to': 'A', 'amount': Decimal('15.00')}]
    """
    return _plan(
        balances,
        settings.LEDGER_TOLERANCE if tolerance is None else tolerance,
        settings.PLANNER_MAX_ITERATIONS if max_iterations is None else max_iterations,
        settings.LEDGER_PRECISION
    )


def plan_transfers_detailed(
    balances: Dict[str, Decimal],
    tolerance: Optional[Decimal] = None,
    max_iterations: Optional[int] = None
) -> Tuple[List[Dict], List[str]]:
    """
    Plan transfers and return a step-by-step log of the matching.

    Same algorithm as plan_transfers(); useful for debugging and for showing
    members how a settle-up was derived.

    Returns:
        Tuple of (transfers, logs)
    """
    logs = [f"Initial balances: {balances}"]
    transfers = _plan(
        balances,
        settings.LEDGER_TOLERANCE if tolerance is None else tolerance,
        settings.PLANNER_MAX_ITERATIONS if max_iterations is None else max_iterations,
        settings.LEDGER_PRECISION,
        logs
    )
    return transfers, logs

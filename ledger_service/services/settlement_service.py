import logging
import threading
import weakref
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union
from ledger_service.core.exceptions import Forbidden, InvalidSettlement, InvalidTransition
from ledger_service.models.group import Group
from ledger_service.schemas.settlement_schema import (
    Settlement, SettlementKind, SettlementStatus, utc_now
)

logger = logging.getLogger(__name__)

# One lock per settlement id; entries disappear once no transition holds them
_settlement_locks = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


class _SettlementLock:
    # threading.Lock objects cannot be weakly referenced, so wrap one
    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()


def _settlement_lock(settlement_id: str) -> "_SettlementLock":
    with _registry_lock:
        lock = _settlement_locks.get(settlement_id)
        if lock is None:
            lock = _SettlementLock()
            _settlement_locks[settlement_id] = lock
        return lock


def _coerce_kind(kind: Union[SettlementKind, str]) -> SettlementKind:
    try:
        return SettlementKind(kind)
    except ValueError:
        raise InvalidSettlement(f"Unknown settlement kind: {kind!r}")


def _coerce_amount(amount) -> Decimal:
    try:
        return amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation:
        raise InvalidSettlement(f"Settlement amount is not a number: {amount!r}")


def create_settlement(
    group: Group,
    kind: Union[SettlementKind, str],
    created_by: str,
    from_member_id: Optional[str] = None,
    to_member_id: Optional[str] = None,
    amount: Optional[Decimal] = None
) -> Settlement:
    """
    Create a pending settlement in a group.

    An individual settlement names one payer, one payee and a positive amount.
    A group settlement names no parties; its balances are derived from the
    ledger when the group is settled up.

    Raises:
        Forbidden: If the creator is not a current member of the group
        InvalidSettlement: If the fields do not match the settlement kind
    """
    kind = _coerce_kind(kind)

    if not group.is_member(created_by):
        raise Forbidden("Only group members can create settlements")

    if kind == SettlementKind.group:
        if from_member_id is not None or to_member_id is not None or amount is not None:
            raise InvalidSettlement("Group settlements cannot carry from, to or amount")
    else:
        if from_member_id is None or to_member_id is None or amount is None:
            raise InvalidSettlement("Individual settlements require from, to, and amount fields")
        if from_member_id == to_member_id:
            raise InvalidSettlement("Settlement payer and payee must be different members")
        for member_id in (from_member_id, to_member_id):
            if not group.is_known_member(member_id):
                raise InvalidSettlement(f"Member {member_id} is not a member of this group")
        amount = _coerce_amount(amount)
        if not amount.is_finite() or amount <= 0:
            raise InvalidSettlement(f"Settlement amount must be positive, got {amount}")

    settlement = Settlement(
        group_id=group.id,
        kind=kind,
        from_member_id=from_member_id,
        to_member_id=to_member_id,
        amount=amount,
        created_by=created_by
    )
    logger.info(f"Created {kind.value} settlement {settlement.id} in group {group.id} by {created_by}")
    return settlement


def transition_settlement(
    settlement: Settlement,
    new_status: Union[SettlementStatus, str],
    actor: str
) -> Settlement:
    """
    Move a pending settlement to completed or cancelled.

    Only the settlement's creator may change its status; completed and
    cancelled are terminal. The group's balances are not touched.

    Raises:
        Forbidden: If ``actor`` did not create the settlement
        InvalidTransition: If the settlement is terminal or ``new_status`` is
            not a reachable state
    """
    if actor != settlement.created_by:
        raise Forbidden("Only the settlement creator can change its status")

    try:
        target = SettlementStatus(new_status)
    except ValueError:
        raise InvalidTransition(f"Unknown settlement status: {new_status!r}")

    with _settlement_lock(settlement.id):
        if settlement.is_terminal:
            raise InvalidTransition(
                f"Settlement {settlement.id} is already {settlement.status.value}"
            )
        if target == SettlementStatus.pending:
            raise InvalidTransition(f"Settlement {settlement.id} is already pending")

        settlement.status = target
        settlement.updated_at = utc_now()

    logger.info(f"Settlement {settlement.id} marked {target.value} by {actor}")
    return settlement


def finalize_group_settlement(group: Group, actor: str) -> Group:
    """Close a group for new expenses once it has been settled up"""
    if not group.is_member(actor):
        raise Forbidden("Only group members can settle the group")

    group.mark_settled()
    logger.info(f"Group {group.id} settled by {actor}")
    return group


def get_group_settlements(settlements: Iterable[Settlement], group_id: str) -> List[Settlement]:
    """Get all settlements for a group, oldest first"""
    return sorted(
        (settlement for settlement in settlements if settlement.group_id == group_id),
        key=lambda settlement: settlement.created_at
    )

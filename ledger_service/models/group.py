import logging
import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple

from pydantic import ValidationError

from ledger_service.core.config import settings
from ledger_service.core.exceptions import (
    DuplicateMember, Forbidden, GroupSettled, InvalidExpense, UnknownMember
)
from ledger_service.schemas.expense_schema import Expense, ExpenseCategory
from ledger_service.schemas.group_schema import GroupMemberOut, GroupOut, MemberRemoval
from ledger_service.schemas.member_schema import Member
from ledger_service.utils.balance_ledger import compute_balances
from ledger_service.utils.min_cash_flow import plan_transfers

logger = logging.getLogger(__name__)


class _LedgerState(NamedTuple):
    members: Mapping[str, Member]
    former_members: Mapping[str, Member]
    expenses: Mapping[str, Expense]
    ledger: Mapping[str, Decimal]
    balances: Mapping[str, Decimal]
    stranded_balances: Mapping[str, Decimal]


def _referenced_ids(expenses: Iterable[Expense]) -> set:
    referenced = set()
    for expense in expenses:
        referenced.add(expense.payer)
        referenced.update(expense.participants)
    return referenced


class Group:
    """
    Aggregate owning one group's members, expenses and cached balances.

    Cached balances always equal ``compute_balances`` over the current and
    historical members and the expense set. Every mutation builds the
    candidate state, recomputes the ledger for it and only then replaces the
    whole state in a single assignment, so readers never see a half-applied
    change and a rejected mutation leaves the group untouched.

    Mutations are serialized by a per-group lock.
    """

    def __init__(
        self,
        name: str,
        created_by: Member,
        members: Iterable[Member] = (),
        description: Optional[str] = None,
        group_id: Optional[str] = None
    ):
        self.id = group_id or str(uuid.uuid4())
        self.name = name
        self.description = description
        self.created_by = created_by.id
        self.created_at = datetime.now(timezone.utc)
        self.settled = False
        self._lock = threading.RLock()

        # Creator is always the first member
        initial = {created_by.id: created_by}
        for member in members:
            initial.setdefault(member.id, member)

        self._state: _LedgerState = None
        self._commit(initial, {}, {})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _commit(
        self,
        members: Dict[str, Member],
        former_members: Dict[str, Member],
        expenses: Dict[str, Expense]
    ) -> None:
        referenced = _referenced_ids(expenses.values())
        former_members = {
            member_id: member
            for member_id, member in former_members.items()
            if member_id in referenced and member_id not in members
        }

        ledger = compute_balances(list(members) + list(former_members), expenses.values())

        self._state = _LedgerState(
            members=MappingProxyType(dict(members)),
            former_members=MappingProxyType(former_members),
            expenses=MappingProxyType(dict(expenses)),
            ledger=MappingProxyType(ledger),
            balances=MappingProxyType({member_id: ledger[member_id] for member_id in members}),
            stranded_balances=MappingProxyType({
                member_id: ledger[member_id]
                for member_id in former_members
                if abs(ledger[member_id]) > settings.LEDGER_TOLERANCE
            })
        )

    def _require_creator(self, actor: str, action: str) -> None:
        if actor != self.created_by:
            raise Forbidden(f"Only the group creator can {action}")

    def _require_open(self) -> None:
        if self.settled:
            raise GroupSettled(f"Group {self.id} is settled and accepts no new expenses")

    def _require_current_members(self, member_ids: Iterable[str], expense_id: str) -> None:
        unknown = [member_id for member_id in member_ids if member_id not in self._state.members]
        if unknown:
            raise InvalidExpense(f"Members {unknown} of expense {expense_id} are not current members of this group")

    def _require_payer(self, expense_id: str, actor: str, action: str) -> Expense:
        expense = self._state.expenses.get(expense_id)
        if expense is None:
            raise InvalidExpense(f"Expense {expense_id} does not belong to group {self.id}")
        if expense.payer != actor:
            raise Forbidden(f"Only the payer can {action} this expense")
        return expense

    # ------------------------------------------------------------------
    # Expense operations
    # ------------------------------------------------------------------

    def add_expense(self, expense: Expense) -> Mapping[str, Decimal]:
        """Admit an expense and return the recomputed balances."""
        with self._lock:
            self._require_open()
            state = self._state
            if expense.id in state.expenses:
                raise InvalidExpense(f"Expense {expense.id} already belongs to group {self.id}")
            self._require_current_members([expense.payer, *expense.participants], expense.id)

            self._commit(dict(state.members), dict(state.former_members), {**state.expenses, expense.id: expense})

        logger.info(f"Added expense {expense.id} ({expense.amount}) to group {self.id}")
        return self.balances

    def update_expense(
        self,
        expense_id: str,
        actor: str,
        amount: Optional[Decimal] = None,
        participants: Optional[List[str]] = None,
        category: Optional[ExpenseCategory] = None,
        description: Optional[str] = None
    ) -> Expense:
        """Change an expense in place; only its payer may do so."""
        changes = {
            field: value
            for field, value in (
                ("amount", amount),
                ("participants", participants),
                ("category", category),
                ("description", description),
            )
            if value is not None
        }

        with self._lock:
            self._require_open()
            state = self._state
            current = self._require_payer(expense_id, actor, "update")

            try:
                updated = Expense.model_validate({**current.model_dump(), **changes})
            except ValidationError as e:
                raise InvalidExpense(f"Invalid update for expense {expense_id}: {e}") from e

            added = sorted(set(updated.participants) - set(current.participants))
            self._require_current_members(added, expense_id)

            expenses = dict(state.expenses)
            expenses[expense_id] = updated
            self._commit(dict(state.members), dict(state.former_members), expenses)

        logger.info(f"Updated expense {expense_id} in group {self.id}: {sorted(changes)}")
        return updated

    def remove_expense(self, expense_id: str, actor: str) -> Mapping[str, Decimal]:
        """Detach an expense from the group; only its payer may do so."""
        with self._lock:
            state = self._state
            self._require_payer(expense_id, actor, "delete")

            expenses = {key: value for key, value in state.expenses.items() if key != expense_id}
            self._commit(dict(state.members), dict(state.former_members), expenses)

        logger.info(f"Removed expense {expense_id} from group {self.id}")
        return self.balances

    # ------------------------------------------------------------------
    # Membership operations
    # ------------------------------------------------------------------

    def add_member(self, member: Member, actor: str) -> Mapping[str, Decimal]:
        with self._lock:
            self._require_creator(actor, "add members")
            state = self._state
            if member.id in state.members:
                raise DuplicateMember(f"Member {member.id} is already a member of this group")

            members = {**state.members, member.id: member}
            former = {key: value for key, value in state.former_members.items() if key != member.id}
            self._commit(members, former, dict(state.expenses))

        logger.info(f"Added member {member.id} to group {self.id}")
        return self.balances

    def remove_member(self, member_id: str, actor: str) -> MemberRemoval:
        """
        Remove a member from the group.

        A member still referenced by expenses stays in the ledger as a
        historical member; the result's ``stranded`` flag tells the caller
        that a non-zero balance was left behind.
        """
        with self._lock:
            self._require_creator(actor, "remove members")
            if member_id == self.created_by:
                raise Forbidden("The group creator cannot be removed")

            state = self._state
            if member_id not in state.members:
                raise UnknownMember(f"Member {member_id} is not a member of this group")

            balance = state.balances[member_id]
            members = {key: value for key, value in state.members.items() if key != member_id}
            former = {**state.former_members, member_id: state.members[member_id]}
            self._commit(members, former, dict(state.expenses))

        stranded = abs(balance) > settings.LEDGER_TOLERANCE
        if stranded:
            logger.warning(f"Removed member {member_id} from group {self.id} with non-zero balance {balance}")
        else:
            logger.info(f"Removed member {member_id} from group {self.id}")

        return MemberRemoval(member_id=member_id, balance=balance, stranded=stranded)

    def mark_settled(self) -> None:
        with self._lock:
            self.settled = True

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def balances(self) -> Mapping[str, Decimal]:
        """Cached balances of the current members."""
        return self._state.balances

    @property
    def stranded_balances(self) -> Mapping[str, Decimal]:
        """Non-zero balances of members that were removed while still owing or owed."""
        return self._state.stranded_balances

    @property
    def members(self) -> Tuple[Member, ...]:
        return tuple(self._state.members.values())

    @property
    def member_ids(self) -> List[str]:
        return list(self._state.members)

    @property
    def expenses(self) -> Tuple[Expense, ...]:
        return tuple(self._state.expenses.values())

    def get_member(self, member_id: str) -> Optional[Member]:
        state = self._state
        return state.members.get(member_id) or state.former_members.get(member_id)

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        return self._state.expenses.get(expense_id)

    def is_member(self, member_id: str) -> bool:
        return member_id in self._state.members

    def is_known_member(self, member_id: str) -> bool:
        """True for current members and for removed members still referenced by expenses."""
        state = self._state
        return member_id in state.members or member_id in state.former_members

    def ledger_snapshot(self) -> Tuple[List[str], Tuple[Expense, ...]]:
        """Ledger member ids (current, then historical) and expenses read from one state."""
        state = self._state
        return list(state.members) + list(state.former_members), tuple(state.expenses.values())

    def expenses_by_date(self, limit: Optional[int] = None) -> List[Expense]:
        """Expenses newest first."""
        ordered = sorted(self._state.expenses.values(), key=lambda expense: expense.timestamp, reverse=True)
        return ordered[:limit] if limit is not None else ordered

    def plan_settlement(self) -> List[Dict]:
        """Advisory transfers that would settle the group's current balances."""
        return plan_transfers(dict(self._state.ledger))

    def to_schema(self) -> GroupOut:
        state = self._state
        return GroupOut(
            id=self.id,
            name=self.name,
            description=self.description,
            created_by=self.created_by,
            settled=self.settled,
            members=[
                GroupMemberOut(member_id=member.id, name=member.name, balance=state.balances[member.id])
                for member in state.members.values()
            ],
            expense_ids=list(state.expenses),
            created_at=self.created_at
        )

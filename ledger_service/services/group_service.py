import logging
from typing import Iterable, List, Optional
from ledger_service.models.group import Group
from ledger_service.schemas.member_schema import Member

logger = logging.getLogger(__name__)


def create_group(
    name: str,
    created_by: Member,
    members: Iterable[Member] = (),
    description: Optional[str] = None
) -> Group:
    """Create a new group; the creator becomes its first member"""
    group = Group(name=name, created_by=created_by, members=members, description=description)
    logger.info(f"Created group {group.id} ({name}) with {len(group.members)} members")
    return group


def is_group_member(group: Group, member_id: str) -> bool:
    """Check if member currently belongs to the group"""
    return group.is_member(member_id)


def is_group_creator(group: Group, member_id: str) -> bool:
    """Check if member created the group"""
    return group.created_by == member_id


def get_group_members(group: Group) -> List[Member]:
    """Get all current members of a group"""
    return list(group.members)

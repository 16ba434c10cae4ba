"""Role based access rules.

Roles form a tree (admin > moderator > member > user); permissions hang off
the roles. Moderator powers are additionally scoped to the forums listed in
agora_moderator, see `can_moderate`.
"""

from __future__ import annotations

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from agora.db.models import AuthAssignment, AuthItem, AuthItemChild
from agora.forum.moderators import is_mod

TYPE_ROLE = 1
TYPE_PERMISSION = 2

ROLE_USER = "user"
ROLE_MEMBER = "member"
ROLE_MODERATOR = "moderator"
ROLE_ADMIN = "admin"

PERMISSIONS: dict[str, str] = {
    "viewThread": "View thread",
    "viewForum": "View forum",
    "createThread": "Create thread",
    "createPost": "Create post",
    "updateOwnPost": "Update own post",
    "deleteOwnPost": "Delete own post",
    "sendMessage": "Send private message",
    "updatePost": "Update post",
    "deletePost": "Delete post",
    "updateThread": "Update thread",
    "deleteThread": "Delete thread",
    "pinThread": "Pin thread",
    "lockThread": "Lock thread",
    "moveThread": "Move thread",
    "movePost": "Move post",
    "banUser": "Ban user",
    "deleteUser": "Delete user",
    "promoteUser": "Promote user",
    "createForum": "Create forum",
    "updateForum": "Update forum",
    "deleteForum": "Delete forum",
    "createCategory": "Create category",
    "updateCategory": "Update category",
    "deleteCategory": "Delete category",
    "changeSettings": "Change settings",
}

# Role -> (child roles, own permissions)
ROLE_TREE: dict[str, tuple[list[str], list[str]]] = {
    ROLE_USER: ([], ["viewThread", "viewForum"]),
    ROLE_MEMBER: (
        [ROLE_USER],
        ["createThread", "createPost", "updateOwnPost", "deleteOwnPost", "sendMessage"],
    ),
    ROLE_MODERATOR: (
        [ROLE_MEMBER],
        [
            "updatePost",
            "deletePost",
            "updateThread",
            "deleteThread",
            "pinThread",
            "lockThread",
            "moveThread",
            "movePost",
            "banUser",
        ],
    ),
    ROLE_ADMIN: (
        [ROLE_MODERATOR],
        [
            "deleteUser",
            "promoteUser",
            "createForum",
            "updateForum",
            "deleteForum",
            "createCategory",
            "updateCategory",
            "deleteCategory",
            "changeSettings",
        ],
    ),
}


async def seed_rules(db: AsyncSession) -> None:
    """Insert every role, permission and edge. The caller commits."""
    items = [{"name": name, "type": TYPE_PERMISSION, "description": desc} for name, desc in PERMISSIONS.items()]
    items += [{"name": role, "type": TYPE_ROLE, "description": None} for role in ROLE_TREE]
    await db.execute(insert(AuthItem), items)

    edges = []
    for role, (children, permissions) in ROLE_TREE.items():
        edges += [{"parent": role, "child": child} for child in children + permissions]
    await db.execute(insert(AuthItemChild), edges)


async def assign(db: AsyncSession, role: str, user_id: int) -> bool:
    """Give `role` to `user_id`; False when the role does not exist."""
    if await db.get(AuthItem, role) is None:
        return False
    db.add(AuthAssignment(item_name=role, user_id=user_id))
    await db.flush()
    return True


def expand(item: str) -> set[str]:
    """All roles and permissions reachable from `item` (itself included)."""
    seen = {item}
    pending = [item]
    while pending:
        children, permissions = ROLE_TREE.get(pending.pop(), ([], []))
        for child in children + permissions:
            if child not in seen:
                seen.add(child)
                pending.append(child)
    return seen


async def user_items(db: AsyncSession, user_id: int) -> set[str]:
    result = await db.execute(select(AuthAssignment.item_name).where(AuthAssignment.user_id == user_id))
    granted: set[str] = set()
    for (item,) in result.all():
        granted |= expand(item)
    return granted


async def can(db: AsyncSession, user_id: int, permission: str) -> bool:
    return permission in await user_items(db, user_id)


async def can_moderate(db: AsyncSession, user_id: int, forum_id: int) -> bool:
    """Admins moderate everywhere; moderators only their own forums."""
    granted = await user_items(db, user_id)
    if ROLE_ADMIN in granted:
        return True
    if ROLE_MODERATOR not in granted:
        return False
    return await is_mod(db, forum_id, user_id)

"""
Admin user management: listing, blocking and role changes.

A blocked principal keeps its row and bookings; get_current_user refuses
its tokens with 403 and login refuses new ones.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.models.user import User
from carrental.core.errors import NotFound, InvalidState
from carrental.core.logging import get_logger

logger = get_logger(__name__)


async def get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


async def toggle_block(db: AsyncSession, user_id: int, acting_admin: User) -> User:
    user = await get_user(db, user_id)
    if user.id == acting_admin.id:
        raise InvalidState("Admins cannot block themselves")

    user.is_blocked = not user.is_blocked
    await db.flush()
    await db.refresh(user)

    logger.info(
        "user_block_toggled",
        user_id=user_id,
        is_blocked=user.is_blocked,
        admin_id=acting_admin.id,
    )
    return user


async def update_role(db: AsyncSession, user_id: int, role: str, acting_admin: User) -> User:
    user = await get_user(db, user_id)
    if user.id == acting_admin.id and role != user.role:
        raise InvalidState("Admins cannot change their own role")

    user.role = role
    await db.flush()
    await db.refresh(user)

    logger.info("user_role_updated", user_id=user_id, role=role, admin_id=acting_admin.id)
    return user

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelsync.core.logging import get_logger
from reelsync.db.models import User


class UserStore:
    """Users mirrored from the identity provider, plus their banner pointer."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = get_logger(component="user_store")

    async def get(self, user_id: str) -> Optional[User]:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def upsert(self, user_id: str, *, name: Optional[str], image_url: Optional[str]) -> User:
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                user = User(id=user_id, name=name, image_url=image_url)
                session.add(user)
            else:
                user.name = name
                user.image_url = image_url
            await session.commit()
            await session.refresh(user)
            return user

    async def delete(self, user_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(User).where(User.id == user_id))
            await session.commit()
        return result.rowcount > 0

    async def swap_banner(self, user_id: str, *, expected_key: Optional[str], url: str, key: str) -> bool:
        """Point the banner at ``key`` if the stored key is still ``expected_key``."""
        condition = User.banner_key.is_(None) if expected_key is None else User.banner_key == expected_key
        stmt = (
            update(User)
            .where(User.id == user_id, condition)
            .values(banner_url=url, banner_key=key, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1


def identity_display_name(data: dict[str, Any]) -> Optional[str]:
    parts = [data.get("first_name"), data.get("last_name")]
    name = " ".join(part for part in parts if part)
    return name or data.get("username") or None


__all__ = ["UserStore", "identity_display_name"]

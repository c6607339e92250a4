from typing import Optional
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from .....db.models import User
from .....application.ports.user_repo import UserRepository, UserDto

class SqlUserRepository(UserRepository):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _to_dto(self, user: User) -> UserDto:
        return UserDto(
            id=user.id,
            name=getattr(user, 'name', None),
            role=user.role,
            quota_bytes=user.quota_bytes,
            permissions=list(user.permissions or []),
            is_active=bool(user.is_active),
        )

    async def get_by_id(self, user_id: str) -> Optional[UserDto]:
        async with self.session_factory() as session:
            user = (await session.exec(select(User).where(User.id == user_id))).first()
            return self._to_dto(user) if user else None

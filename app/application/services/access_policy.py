from dataclasses import dataclass
from typing import Optional

from ..ports.file_repo import FileRecord
from ..ports.user_repo import UserDto, UserRepository
from ...exceptions import FileAccessDeniedError

READ_ALL_PERMISSION = "files:read_all"


@dataclass
class AccessPolicy:
    """Owners can do anything with their files; anyone else needs files:<action>.

    Public files are readable by every authenticated user.
    """

    user_repo: UserRepository

    async def _user(self, user_id: str) -> Optional[UserDto]:
        user = await self.user_repo.get_by_id(user_id)
        return user if user and user.is_active else None

    async def allows(self, record: FileRecord, user_id: str, action: str) -> bool:
        if record.uploaded_by == user_id:
            return True
        if action == "read" and record.is_public:
            return True
        user = await self._user(user_id)
        return bool(user and user.can(f"files:{action}"))

    async def check(self, record: FileRecord, user_id: str, action: str) -> None:
        if not await self.allows(record, user_id, action):
            raise FileAccessDeniedError(
                "Access denied",
                details={"file_id": record.id, "action": action},
            )

    async def can_read_all(self, user_id: str) -> bool:
        user = await self._user(user_id)
        return bool(user and user.can(READ_ALL_PERMISSION))

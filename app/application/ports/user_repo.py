from typing import List, Optional, Protocol


class UserDto:
    def __init__(self, id: str, name: Optional[str], role: str, quota_bytes: Optional[int],
                 permissions: Optional[List[str]] = None, is_active: bool = True):
        self.id = id
        self.name = name
        self.role = role
        self.quota_bytes = quota_bytes
        self.permissions = list(permissions or [])
        self.is_active = is_active

    def can(self, permission: str) -> bool:
        return permission in self.permissions


class UserRepository(Protocol):
    async def get_by_id(self, user_id: str) -> Optional[UserDto]:
        ...

from dataclasses import dataclass
from typing import Optional

from ..ports.file_repo import FileRepository
from ..ports.user_repo import UserRepository
from ...core.config import PipelineConfig


@dataclass
class QuotaStatus:
    used: int
    limit: int
    file_count: int

    @property
    def available(self) -> int:
        return max(0, self.limit - self.used)

    def allows(self, additional_bytes: int) -> bool:
        return self.used + additional_bytes <= self.limit


@dataclass
class QuotaService:
    file_repo: FileRepository
    user_repo: UserRepository
    config: PipelineConfig

    async def get_quota(self, user_id: str) -> Optional[QuotaStatus]:
        """Usage and limit for a user, or None when the user is unknown."""
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            return None
        limit = user.quota_bytes if user.quota_bytes is not None else self.config.quota_for_role(user.role)
        usage = await self.file_repo.user_usage(user_id)
        return QuotaStatus(used=usage.total_size, limit=limit, file_count=usage.file_count)

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..ports.malware_scanner import MalwareScanner
from .quota_service import QuotaService
from ...core.config import UploadPolicy
from ...mime_utils import normalize_mime_type, resolve_mime_type
from ...utils import format_file_size

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    detected_mime_type: Optional[str] = None


@dataclass
class FileValidator:
    """Checks an upload against the policy before anything is written.

    Every check runs even after an earlier one fails so the caller gets the
    full list of problems in one response.
    """

    policy: UploadPolicy
    quota_service: QuotaService
    scanner: Optional[MalwareScanner] = None

    async def validate(self, data: bytes, declared_mime_type: Optional[str], original_name: str, user_id: str) -> ValidationResult:
        errors: List[str] = []
        size = len(data)

        if size == 0:
            errors.append("File is empty")
        if size > self.policy.max_size:
            errors.append(
                f"File size {format_file_size(size)} exceeds maximum allowed size of {format_file_size(self.policy.max_size)}"
            )

        detected = resolve_mime_type(data, declared_mime_type, original_name) if size else normalize_mime_type(declared_mime_type)
        if detected not in self.policy.allowed_mime_types:
            errors.append(f"File type {detected or 'unknown'} is not allowed")

        if self.policy.scan_for_malware and self.scanner is not None and size:
            try:
                scan = await self.scanner.scan(data, original_name)
            except Exception as e:
                logger.error(f"Malware scan failed for {original_name!r}: {e}")
                errors.append("Malware scan failed")
            else:
                if not scan.clean:
                    errors.append(f"File failed security scan: {scan.threat or 'threat detected'}")

        try:
            quota = await self.quota_service.get_quota(user_id)
        except Exception as e:
            logger.error(f"Quota lookup failed for user {user_id}: {e}")
            quota = None
        if quota is None:
            errors.append("Failed to check user quota")
        elif not quota.allows(size):
            errors.append(
                f"Upload would exceed storage quota ({format_file_size(quota.used)} of {format_file_size(quota.limit)} used)"
            )

        return ValidationResult(is_valid=not errors, errors=errors, detected_mime_type=detected)

import os
import re
import uuid
import logging
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence, TypeVar

import jwt

from .core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

# =========================
# JWT Token Handling
# =========================
def decode_jwt_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError:
        return None


def create_jwt_token(data: dict, secret: Optional[str] = None) -> str:
    return jwt.encode(data.copy(), secret or settings.SECRET_KEY, algorithm=settings.ALGORITHM)


# =========================
# Files
# =========================
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_file_id() -> str:
    return str(uuid.uuid4())


def sanitize_filename(name: Optional[str], fallback: str = "file") -> str:
    """Reduce an untrusted filename to a safe basename."""
    base = os.path.basename((name or "").replace("\\", "/"))
    base = _UNSAFE_CHARS.sub("_", base).strip("._")
    if not base:
        return fallback
    stem, ext = os.path.splitext(base)
    return f"{stem[:100]}{ext[:16]}"


def format_file_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])

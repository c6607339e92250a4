# Models package (re-export feature modules for stable imports)
from .users.user import User
from .files.stored_file import StoredFile
from .files.access_log import FileAccessLog

__all__ = [
    "User",
    "StoredFile",
    "FileAccessLog",
]

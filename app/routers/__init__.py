# Routers package
from . import files_router

__all__ = [
    "files_router",
]

from typing import Optional, Dict, Any, Protocol


class AuditLogger(Protocol):
    def log(self, action: str, user_id: str, entity_id: Optional[str] = None, entity_type: str = "file", success: bool = True, details: Optional[Dict[str, Any]] = None) -> None:
        ...

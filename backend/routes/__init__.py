from typing import Any, Dict, Optional

from backend.db import serialize


def ok(data: Optional[Dict[str, Any]] = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Standard success envelope."""
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = serialize(data)
    return body

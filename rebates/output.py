"""
Output Builder

Wraps operation results in the response envelope shared by every action.
"""

from datetime import date, datetime, timezone
from decimal import Decimal


def json_default(value):
    """json.dumps fallback for the few non-JSON types that reach a response."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class ResponseBuilder:
    """Builds `{success, data}` and `{success: false, message}` bodies."""

    def success(self, data) -> dict:
        return {
            "success": True,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def error(self, message: str) -> dict:
        return {"success": False, "message": message}

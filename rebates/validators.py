"""
Request Validation for the Talent Rebate Engine

Validates request shape before any store access.
Raises ValidationError with clear messages for any constraint violation.
"""

from decimal import Decimal, InvalidOperation

from .errors import ValidationError
from .models import PLATFORMS


class RequestValidator:
    """Validates request parameters according to business rules."""

    MIN_RATE = Decimal("0")
    MAX_RATE = Decimal("100")
    MAX_DECIMAL_PLACES = 2

    def require(self, params: dict, name: str):
        """Return params[name], raising if it is missing or blank."""
        value = params.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"Missing required parameter: {name}")
        return value

    def validate_platform(self, platform) -> str:
        if not platform:
            raise ValidationError("Missing required parameter: platform")
        if platform not in PLATFORMS:
            raise ValidationError(
                f"Unsupported platform: {platform}. Supported: {', '.join(PLATFORMS)}"
            )
        return platform

    def validate_rate(self, value, name: str = "rebateRate") -> Decimal:
        """
        Parse a rate percentage.

        Accepts numbers or numeric strings in [0, 100] with at most two
        decimal places. Booleans are rejected even though they are ints.
        """
        if value is None or isinstance(value, bool):
            raise ValidationError(f"{name} must be a number")
        try:
            rate = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{name} must be a number, got: {value!r}")

        if not rate.is_finite():
            raise ValidationError(f"{name} must be a finite number, got: {value!r}")

        if not (self.MIN_RATE <= rate <= self.MAX_RATE):
            raise ValidationError(f"{name} must be between 0 and 100, got: {value}")

        if rate.as_tuple().exponent < -self.MAX_DECIMAL_PLACES:
            raise ValidationError(f"{name} supports at most 2 decimal places, got: {value}")

        return rate

    def validate_batch(self, items, limit: int, name: str = "talents") -> list:
        """Validate a batch list: non-empty and within its size limit."""
        if not isinstance(items, list) or len(items) == 0:
            raise ValidationError(f"{name} must be a non-empty array")
        if len(items) > limit:
            raise ValidationError(f"{name} cannot exceed {limit} items per request, got: {len(items)}")
        if not all(isinstance(item, dict) for item in items):
            raise ValidationError(f"Every entry of {name} must be an object")
        return items

    def validate_one_ids(self, items: list, name: str = "oneId") -> list[str]:
        """At least one item must carry an id; returns the ids present."""
        one_ids = [item.get(name) for item in items if item.get(name)]
        if not one_ids:
            raise ValidationError(f"talents contains no valid {name}")
        return one_ids

    def parse_bool(self, value, name: str, default: bool | None = None) -> bool:
        """Accept real booleans plus the strings 'true'/'false' from query strings."""
        if value is None:
            if default is None:
                raise ValidationError(f"Missing required parameter: {name}")
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ValidationError(f"{name} must be a boolean, got: {value!r}")

    def parse_int(self, value, name: str, default: int) -> int:
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be an integer, got: {value!r}")

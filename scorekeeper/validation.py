from typing import Optional

from shared.errors import ValidationError

# Largest value a BIGINT column holds
MAX_INT = 2 ** 63 - 1


def parse_id(value, name: str = 'id') -> int:
    """Identifiers are positive integers; strings of digits are accepted."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {name}")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}")
    if not 0 < parsed <= MAX_INT:
        raise ValidationError(f"Invalid {name}")
    return parsed


def parse_optional_version(data: dict) -> Optional[int]:
    if 'expected_version' not in data or data['expected_version'] is None:
        return None
    return parse_version(data)


def parse_version(data: dict) -> int:
    value = data.get('expected_version')
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value <= MAX_INT:
        raise ValidationError("expected_version must be a positive integer")
    return value


def parse_limit(value, default: int, maximum: int) -> int:
    if value is None:
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer")
    if limit < 1:
        raise ValidationError("limit must be positive")
    return min(limit, maximum)


def require_json_object(data) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data

"""
Schema-driven payload validation.

Schemas are plain dicts: field name → rules. Supported rules:

    type         string | integer | datetime | string_list | status
    required     bool (default False)
    default      value used when the field is missing
    allow_empty  keep "" instead of treating it as missing (strings only)
    min_length / max_length   string length bounds
    min / max                 integer bounds
    min_items                 string_list length lower bound
    allowed                   explicit list of allowed values
"""
import re
from typing import Any, Dict, List

from .errors import ValidationError
from .positions import MAX_POSITION, MIN_POSITION
from .schema import PositionUpdate, TaskStatus, parse_ts


CREATE_TASK_SCHEMA = {
    "name": {"type": "string", "required": True, "min_length": 1, "max_length": 60},
    "status": {"type": "status", "required": True},
    "workspaceId": {"type": "string", "required": True, "min_length": 1},
    "projectId": {"type": "string", "required": True, "min_length": 1},
    "dueDate": {"type": "datetime", "required": True},
    "assigneeId": {"type": "string_list", "required": True, "min_items": 1},
    "description": {"type": "string", "allow_empty": True},
}

PATCH_TASK_SCHEMA = {
    "name": {"type": "string", "min_length": 1, "max_length": 60},
    "status": {"type": "status"},
    "projectId": {"type": "string", "min_length": 1},
    "dueDate": {"type": "datetime"},
    "assigneeId": {"type": "string_list", "min_items": 1},
    "description": {"type": "string", "allow_empty": True},
}

POSITION_UPDATE_SCHEMA = {
    "id": {"type": "string", "required": True, "min_length": 1},
    "status": {"type": "status", "required": True},
    "position": {"type": "integer", "required": True, "min": MIN_POSITION, "max": MAX_POSITION},
}

LIST_QUERY_SCHEMA = {
    "workspaceId": {"type": "string", "required": True, "min_length": 1},
    "projectId": {"type": "string"},
    "status": {"type": "status"},
    "assigneeId": {"type": "string"},
    "dueDate": {"type": "datetime"},
    "search": {"type": "string"},
    "page": {"type": "integer", "default": 1, "min": 1},
    "limit": {"type": "integer", "default": 100, "min": 1, "max": 500},
}


class PayloadValidator:
    """Validates and coerces payloads against a schema dict."""

    def validate(self, params: Dict[str, Any], schema: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate and coerce ``params`` against ``schema``.

        Returns:
            dict of validated, coerced values (missing optional fields omitted).

        Raises:
            ValidationError with a user-facing message on failure.
        """
        if not isinstance(params, dict):
            raise ValidationError("Payload must be a JSON object")

        unknown = set(params.keys()) - set(schema.keys())
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        result = {}
        for name, rules in schema.items():
            value = params.get(name)
            if value is None or (value == "" and not rules.get("allow_empty")):
                if rules.get("required"):
                    raise ValidationError(f"Missing required field: {name}")
                if rules.get("default") is not None:
                    result[name] = rules["default"]
                continue
            result[name] = self._coerce(name, value, rules)
        return result

    def _coerce(self, name: str, value: Any, rules: Dict[str, Any]) -> Any:
        kind = rules.get("type", "string")

        if kind == "string":
            if not isinstance(value, (str, int, float)) or isinstance(value, bool):
                raise ValidationError(f"Field {name} must be a string")
            value = str(value).strip() if not rules.get("allow_empty") else str(value)
            min_length = rules.get("min_length")
            max_length = rules.get("max_length")
            if min_length is not None and len(value) < min_length:
                raise ValidationError(f"Field {name} is required")
            if max_length is not None and len(value) > max_length:
                raise ValidationError(
                    f"Field {name} should not exceed {max_length} characters"
                )
            pattern = rules.get("pattern")
            if pattern and not re.fullmatch(pattern, value):
                raise ValidationError(f"Invalid format for {name}: '{value}'")

        elif kind == "integer":
            if isinstance(value, bool):
                raise ValidationError(f"Field {name} must be an integer, got: '{value}'")
            try:
                value = int(value)
            except (ValueError, TypeError):
                raise ValidationError(f"Field {name} must be an integer, got: '{value}'")
            if rules.get("min") is not None and value < rules["min"]:
                raise ValidationError(f"Field {name} must be >= {rules['min']}, got: {value}")
            if rules.get("max") is not None and value > rules["max"]:
                raise ValidationError(f"Field {name} must be <= {rules['max']}, got: {value}")

        elif kind == "status":
            try:
                value = TaskStatus.from_str(value)
            except ValueError:
                allowed = ", ".join(s.value for s in TaskStatus)
                raise ValidationError(f"Invalid value for {name}: '{value}'. Allowed: {allowed}")

        elif kind == "datetime":
            try:
                value = parse_ts(value)
            except (ValueError, TypeError):
                raise ValidationError(f"Field {name} must be an ISO-8601 date, got: '{value}'")

        elif kind == "string_list":
            if not isinstance(value, list):
                raise ValidationError(f"Field {name} must be a list")
            items = []
            for item in value:
                if not isinstance(item, str) or not item.strip():
                    raise ValidationError(f"Field {name} must contain non-empty strings")
                items.append(item.strip())
            min_items = rules.get("min_items")
            if min_items is not None and len(items) < min_items:
                raise ValidationError(f"Field {name} requires at least {min_items} item(s)")
            value = items

        else:
            raise ValidationError(f"Unknown field type in schema: {kind}")

        allowed = rules.get("allowed")
        if allowed and value not in allowed:
            raise ValidationError(
                f"Invalid value for {name}: '{value}'. "
                f"Allowed: {', '.join(str(a) for a in allowed)}"
            )
        return value


_validator = PayloadValidator()


def validate_create(payload: Dict[str, Any]) -> Dict[str, Any]:
    return _validator.validate(payload, CREATE_TASK_SCHEMA)


def validate_patch(payload: Dict[str, Any]) -> Dict[str, Any]:
    return _validator.validate(payload, PATCH_TASK_SCHEMA)


def validate_list_query(params: Dict[str, Any]) -> Dict[str, Any]:
    return _validator.validate(params, LIST_QUERY_SCHEMA)


def validate_bulk(payload: Any) -> List[PositionUpdate]:
    """Validate ``{"tasks": [{id, status, position}, ...]}`` into instructions.

    Duplicate ids keep the last instruction.
    """
    if isinstance(payload, dict):
        items = payload.get("tasks")
    else:
        items = payload
    if not isinstance(items, list) or not items:
        raise ValidationError("Field tasks must be a non-empty list")

    updates: Dict[str, PositionUpdate] = {}
    for index, item in enumerate(items):
        try:
            data = _validator.validate(item, POSITION_UPDATE_SCHEMA)
        except ValidationError as e:
            raise ValidationError(f"tasks[{index}]: {e.message}")
        updates[data["id"]] = PositionUpdate(
            id=data["id"], status=data["status"], position=data["position"]
        )
    return list(updates.values())

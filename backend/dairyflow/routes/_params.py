# Overview: Query-string helpers shared by the list endpoints.

from flask import request

from ..errors import ValidationError
from ..validation import parse_datetime_field


def query_int(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={"field": name})


def query_datetime(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    return parse_datetime_field(raw, name)


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data

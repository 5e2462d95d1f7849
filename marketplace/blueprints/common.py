from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from flask import request
from werkzeug.exceptions import BadRequest

from marketplace.config import Config
from marketplace.utils import parse_int


def get_json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise BadRequest("Request body must be a JSON object")
    return payload


def require_fields(payload: Dict[str, Any], *fields: str) -> None:
    missing = [name for name in fields if payload.get(name) in (None, "")]
    if missing:
        raise BadRequest(f"Missing required fields: {', '.join(missing)}")


def pagination_args() -> Tuple[int, int]:
    page = parse_int(request.args.get("page", 1), "page", minimum=1)
    limit = parse_int(
        request.args.get("limit", Config.DEFAULT_PAGE_SIZE),
        "limit",
        minimum=1,
        maximum=Config.MAX_PAGE_SIZE,
    )
    return page, limit


def query_bool(name: str) -> Optional[bool]:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in {"1", "true", "yes", "on"}


def query_int(name: str) -> Optional[int]:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    return parse_int(value, name)

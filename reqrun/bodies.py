"""reqrun bodies - parse raw response bodies into structured values."""

import base64
import datetime
import json
from typing import Any

import yaml

from reqrun.errors import ParseError

YAML_TYPES = ("application/yaml", "application/x-yaml", "text/yaml", "text/x-yaml")


def media_type(content_type: str | None) -> str:
    """'application/json; charset=utf-8' -> 'application/json'."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def json_default(value: Any) -> Any:
    """json.dumps fallback for the YAML types JSON has no literal for.

    Dates and times become ISO text, !!binary becomes base64, !!set a list.
    """
    if isinstance(value, datetime.date | datetime.time):
        return value.isoformat()
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, set | frozenset):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def is_json_type(content_type: str | None) -> bool:
    mt = media_type(content_type)
    return mt == "application/json" or mt.endswith("+json")


def parse_body(raw: bytes, content_type: str | None) -> Any:
    """Parse a response body according to its declared content type.

    JSON and YAML are structured. With no content type at all the body is
    tried as JSON. Anything else is a ParseError.
    """
    mt = media_type(content_type)

    if mt in YAML_TYPES:
        try:
            return yaml.safe_load(raw.decode("utf-8"))
        except (UnicodeDecodeError, yaml.YAMLError) as e:
            raise ParseError(content_type, str(e)) from e

    if not mt or is_json_type(content_type):
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ParseError(content_type, str(e)) from e

    raise ParseError(content_type, "not a structured content type")

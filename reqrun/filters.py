"""reqrun filters - render run results as plain text."""

import json
from typing import Any

from reqrun.bodies import json_default, parse_body
from reqrun.errors import ParseError
from reqrun.models import RunResult
from reqrun.query import find_all


def _decode_body(result: RunResult) -> tuple[bool, Any]:
    """Return (structured, value): parsed body when possible, raw text otherwise."""
    response = result.response
    if response is None or not response.body:
        return False, None
    try:
        return True, parse_body(response.body, response.content_type)
    except ParseError:
        return False, response.text


def _dump(value: Any) -> str:
    if value is None or isinstance(value, bool | int | float):
        return json.dumps(value)
    if not isinstance(value, str | dict | list):
        value = json_default(value)
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False, default=json_default)


def format_body(result: RunResult, json_path: str | None = None) -> str | None:
    """Body text, pretty-printed when structured.

    With json_path, each match is printed on its own block instead of the
    full body.
    """
    structured, body = _decode_body(result)
    if not structured and body is None:
        return None
    if json_path and structured:
        return "\n".join(_dump(m) for m in find_all(body, json_path))
    return _dump(body)


def format_output(
    result: RunResult,
    json_path: str | None = None,
    show_headers: bool = True,
    headers_only: bool = False,
    raw: bool = False,
) -> str:
    """Format one run result for CLI output.

    Default layout:
        [#0 login] POST http://host/login
        STATUS: 200
        TIME: 45ms
        HEADERS:
          Content-Type: application/json
        BODY:
        {...}
        EXTRACTED:
          token=abc
    """
    response = result.response

    if raw:
        return format_body(result, json_path) or ""

    lines: list[str] = [f"[#{result.index} {result.name}] {result.request.method} {result.request.url}"]

    if response is None:
        lines.append(f"ERROR: {result.error}")
        return "\n".join(lines)

    lines.append(f"STATUS: {response.status_code}")
    lines.append(f"TIME: {int(response.elapsed_ms)}ms")

    if (show_headers or headers_only) and response.headers:
        lines.append("HEADERS:")
        for key, value in response.headers:
            lines.append(f"  {key}: {value}")

    if not headers_only:
        body = format_body(result, json_path)
        if body is not None:
            lines.append("BODY:")
            lines.append(body)

    if result.extractions:
        lines.append("EXTRACTED:")
        for extraction in result.extractions:
            lines.append(f"  {extraction.variable}={extraction.value}")

    if result.error is not None:
        lines.append(f"ERROR: {result.error}")

    return "\n".join(lines)

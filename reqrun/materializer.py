"""reqrun materializer - turn a request definition into a dispatch-ready request."""

import base64
import binascii
import json
import logging
from collections.abc import Mapping
from urllib.parse import urlencode

from reqrun.bodies import json_default
from reqrun.errors import ResolutionError, UnresolvedVariable
from reqrun.models import AuthDescriptor, BodyDefinition, RequestDefinition, ResolvedRequest
from reqrun.templating import find_placeholders, resolve_in_obj, resolve_template

log = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPES = {
    "text": "text/plain",
    "json": "application/json",
    "graphql": "application/json",
    "form": "application/x-www-form-urlencoded",
    "binary": "application/octet-stream",
}


def _resolve(field: str, text, view: Mapping[str, str]):
    """Resolve one field, tagging any unresolved name with the field."""
    try:
        return resolve_template(text, view)
    except UnresolvedVariable as e:
        raise ResolutionError(field, e.name) from e


def _resolve_obj(field: str, obj, view: Mapping[str, str]):
    try:
        return resolve_in_obj(obj, view)
    except UnresolvedVariable as e:
        raise ResolutionError(field, e.name) from e


def _build_url(definition: RequestDefinition, view: Mapping[str, str]) -> str:
    url = _resolve("url", definition.url, view)
    if not definition.params:
        return url
    params = [
        (name, _resolve(f"params.{name}", value, view)) for name, value in definition.params
    ]
    sep = "&" if "?" in url else "?"
    return url + sep + urlencode(params)


def _build_body(body: BodyDefinition, view: Mapping[str, str]) -> bytes:
    """Resolve a body template by kind and encode it."""
    if body.kind == "text":
        return _resolve("body", body.content, view).encode("utf-8")

    if body.kind == "json":
        return json.dumps(_resolve_obj("body", body.content, view), default=json_default).encode("utf-8")

    if body.kind == "graphql":
        content = body.content or {}
        payload = {
            "query": _resolve("body.query", content.get("query", ""), view),
            "variables": {
                k: _resolve_obj(f"body.variables.{k}", v, view)
                for k, v in (content.get("variables") or {}).items()
            },
        }
        return json.dumps(payload, default=json_default).encode("utf-8")

    if body.kind == "form":
        pairs = [(k, _resolve(f"body.{k}", v, view)) for k, v in body.content]
        return urlencode(pairs).encode("utf-8")

    if body.kind == "binary":
        encoded = _resolve("body", body.content, view)
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ResolutionError("body", reason=f"invalid base64: {e}") from e

    raise ResolutionError("body", reason=f"unknown body type '{body.kind}'")


def build_auth_header(
    auth: AuthDescriptor | None,
    view: Mapping[str, str],
) -> tuple[str, str] | None:
    """Resolve an auth descriptor into a single header.

    Supports:
    - bearer:  Authorization: Bearer <token>
    - basic:   Authorization: Basic <b64(username:password)>
    - api-key: <header>: <token>
    """
    if auth is None or auth.kind == "none":
        return None

    if auth.kind == "bearer":
        token = _resolve("auth.token", auth.token, view)
        return ("Authorization", f"Bearer {token}")

    if auth.kind == "basic":
        username = _resolve("auth.username", auth.username, view)
        password = _resolve("auth.password", auth.password, view)
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
        return ("Authorization", f"Basic {credentials}")

    if auth.kind == "api-key":
        token = _resolve("auth.token", auth.token, view)
        return (auth.header, token)

    raise ResolutionError("auth", reason=f"unknown auth type '{auth.kind}'")


def _has_header(headers: list[tuple[str, str]], name: str) -> bool:
    lower = name.lower()
    return any(k.lower() == lower for k, _ in headers)


def materialize(definition: RequestDefinition, view: Mapping[str, str]) -> ResolvedRequest:
    """Build a ResolvedRequest from a definition and a variable view.

    Every field goes through the resolver. The first unresolved
    placeholder raises ResolutionError naming the field; nothing partial is
    returned. The same inputs always produce an equal ResolvedRequest.
    """
    log.debug("Materializing %s, url references %s", definition.name, find_placeholders(definition.url))
    url = _build_url(definition, view)

    headers = [
        (name, _resolve(f"headers.{name}", value, view)) for name, value in definition.headers
    ]

    body = None
    if definition.body is not None:
        body = _build_body(definition.body, view)
        if not _has_header(headers, "Content-Type"):
            headers.append(("Content-Type", DEFAULT_CONTENT_TYPES[definition.body.kind]))

    auth_header = build_auth_header(definition.auth, view)
    if auth_header is not None:
        # Auth replaces an explicit header of the same name in place
        lower = auth_header[0].lower()
        for i, (name, _) in enumerate(headers):
            if name.lower() == lower:
                headers[i] = auth_header
                break
        else:
            headers.append(auth_header)

    resolved = ResolvedRequest(
        method=definition.method.value,
        url=url,
        headers=tuple(headers),
        body=body,
    )
    log.debug("Materialized %s: %s %s", definition.name, resolved.method, resolved.url)
    return resolved

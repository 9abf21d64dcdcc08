"""reqrun loader - read collection, environment and request files into models.

Layout of a collection directory:

    collections/
      GitHub/
        collection.yaml          # headers, auth, vars shared by every request
        environments/
          prod.yaml              # vars
        login.yaml               # one request per file
        GraphQL/GetUser.yaml     # names may include sub-directories
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from reqrun import core
from reqrun.errors import DefinitionError
from reqrun.models import (
    AUTH_KINDS,
    BODY_KINDS,
    AuthDescriptor,
    BodyDefinition,
    ExtractionRule,
    HttpMethod,
    RequestDefinition,
)
from reqrun.query import compile_query
from reqrun.variables import VariableStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Collection:
    name: str
    path: Path
    headers: tuple[tuple[str, str], ...] = ()
    auth: AuthDescriptor | None = None
    variables: dict[str, str] = field(default_factory=dict)


def parse_key_values(data: Any, where: str) -> list[tuple[str, str]]:
    """Parse a key/value list.

    Accepts either a mapping ({name: value}) or a list of
    {key, value, enabled} entries; entries with enabled: false are skipped.
    """
    if data is None:
        return []
    if isinstance(data, dict):
        return [(str(k), _as_text(v)) for k, v in data.items()]
    if isinstance(data, list):
        pairs = []
        for item in data:
            if not isinstance(item, dict) or "key" not in item:
                raise DefinitionError(f"{where}: expected entries with 'key' and 'value'")
            if item.get("enabled", True) is False:
                continue
            pairs.append((str(item["key"]), _as_text(item.get("value", ""))))
        return pairs
    raise DefinitionError(f"{where}: expected a mapping or a list")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def merge_headers(*groups: Iterable[tuple[str, str]]) -> tuple[tuple[str, str], ...]:
    """Combine header lists; a later header replaces an earlier one of the same name.

    Names compare case-insensitively. A replaced header keeps its position.
    """
    merged: dict[str, tuple[str, str]] = {}
    for group in groups:
        for name, value in group:
            merged[name.lower()] = (name, value)
    return tuple(merged.values())


def parse_auth(data: Any, where: str) -> AuthDescriptor | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise DefinitionError(f"{where}: auth must be a mapping")
    kind = str(data.get("type", "")).lower()
    if kind not in AUTH_KINDS:
        raise DefinitionError(f"{where}: unknown auth type '{kind}' (expected {', '.join(AUTH_KINDS)})")
    return AuthDescriptor(
        kind=kind,
        token=_as_text(data.get("token")),
        username=_as_text(data.get("username")),
        password=_as_text(data.get("password")),
        header=str(data.get("header") or "X-API-Key"),
    )


def parse_body_definition(data: Any, where: str) -> BodyDefinition | None:
    """Parse a request body.

    Full form: {type: json, json: {...}}, {type: text, text: "..."},
    {type: graphql, graphql: {query, variables}}, {type: form, form: [...]},
    {type: binary, binary: <base64>}.
    Shorthand: a string is a text body, any other value is a JSON body.
    """
    if data is None:
        return None
    if isinstance(data, str):
        return BodyDefinition("text", data)
    if isinstance(data, dict) and data.get("type") in BODY_KINDS and data["type"] in data:
        kind = data["type"]
        content = data[kind]
        if kind in ("text", "binary"):
            return BodyDefinition(kind, _as_text(content))
        if kind == "form":
            return BodyDefinition(kind, tuple(parse_key_values(content, f"{where}: form")))
        if kind == "graphql":
            if not isinstance(content, dict) or "query" not in content:
                raise DefinitionError(f"{where}: graphql body needs a 'query'")
            return BodyDefinition(
                kind,
                {"query": str(content["query"]), "variables": dict(content.get("variables") or {})},
            )
        return BodyDefinition(kind, content)
    return BodyDefinition("json", data)


def parse_extractions(data: Any, where: str) -> tuple[ExtractionRule, ...]:
    """Parse extract rules, compiling every path so bad syntax fails at load time.

    Accepts {variable: path} or a list of {path, as}.
    """
    if data is None:
        return ()
    rules: list[ExtractionRule] = []
    if isinstance(data, dict):
        rules = [ExtractionRule(path=str(p), variable=str(v)) for v, p in data.items()]
    elif isinstance(data, list):
        for item in data:
            if not isinstance(item, dict) or "path" not in item:
                raise DefinitionError(f"{where}: extract entries need 'path' and 'as'")
            variable = item.get("as") or item.get("variable")
            if not variable:
                raise DefinitionError(f"{where}: extract entry for '{item['path']}' has no 'as'")
            rules.append(ExtractionRule(path=str(item["path"]), variable=str(variable)))
    else:
        raise DefinitionError(f"{where}: extract must be a mapping or a list")
    for rule in rules:
        compile_query(rule.path)
    return tuple(rules)


def load_collection(collections_dir: Path, name: str) -> Collection:
    path = core.collection_dir(collections_dir, name)
    data = core.read_yaml(path / core.COLLECTION_FILE)
    where = f"collection {name}"
    collection = Collection(
        name=name,
        path=path,
        headers=tuple(parse_key_values(data.get("headers"), f"{where}: headers")),
        auth=parse_auth(data.get("auth"), where),
        variables=dict(parse_key_values(data.get("vars"), f"{where}: vars")),
    )
    log.debug("Collection: %s", collection)
    return collection


def load_environment(collection: Collection, name: str) -> dict[str, str]:
    path = core.environment_path(collection.path, name)
    if not path.is_file():
        raise DefinitionError(f"Environment '{name}' not found in collection '{collection.name}'")
    data = core.read_yaml(path)
    return dict(parse_key_values(data.get("vars"), f"environment {name}: vars"))


def parse_request(collection: Collection, name: str, data: dict) -> RequestDefinition:
    """Build a RequestDefinition from a parsed request file.

    Collection headers come first; a request header replaces a collection
    header of the same name. Request auth overrides collection auth (auth
    type none disables it).
    """
    where = f"request {name}"
    http = data.get("http")
    if not isinstance(http, dict):
        raise DefinitionError(f"{where}: missing 'http' section")
    url = http.get("url")
    if not url:
        raise DefinitionError(f"{where}: missing url")
    try:
        method = HttpMethod.parse(http.get("method", "GET"))
    except ValueError as e:
        raise DefinitionError(f"{where}: unknown method '{http.get('method')}'") from e

    params = http.get("params") or {}
    query = params.get("query") if isinstance(params, dict) else None

    vars_section = data.get("vars") or {}
    if not isinstance(vars_section, dict):
        raise DefinitionError(f"{where}: vars must be a mapping with a 'pre-request' list")
    pre_request = vars_section.get("pre-request", vars_section.get("pre_request"))

    depends = data.get("depends") or []
    if isinstance(depends, str):
        depends = [depends]

    auth = parse_auth(http.get("auth"), where)
    return RequestDefinition(
        name=name,
        method=method,
        url=str(url),
        headers=merge_headers(collection.headers, parse_key_values(http.get("headers"), f"{where}: headers")),
        params=tuple(parse_key_values(query, f"{where}: params")),
        body=parse_body_definition(http.get("body"), where),
        auth=auth if auth is not None else collection.auth,
        variables=dict(parse_key_values(pre_request, f"{where}: vars")),
        extractions=parse_extractions(data.get("extract"), where),
        depends=tuple(str(d) for d in depends),
    )


def load_request(collection: Collection, name: str) -> RequestDefinition:
    path = core.request_path(collection.path, name)
    if not path.is_file():
        raise DefinitionError(f"Request '{name}' not found in collection '{collection.name}'")
    definition = parse_request(collection, name, core.read_yaml(path))
    log.debug("Request: %s", definition)
    return definition


def load_sequence(collection: Collection, names: list[str]) -> list[RequestDefinition]:
    """Load requests in run order, expanding depends depth-first.

    Each request appears once, at its first position; a dependency always
    precedes the request that declares it. Cycles raise DefinitionError.
    """
    sequence: list[RequestDefinition] = []
    seen: set[str] = set()

    def _visit(name: str, chain: list[str]) -> None:
        if name in chain:
            cycle_path = " → ".join(chain + [name])
            raise DefinitionError(f"Circular dependency detected: {cycle_path}")
        if name in seen:
            return
        definition = load_request(collection, name)
        for dep in definition.depends:
            _visit(dep, chain + [name])
        seen.add(name)
        sequence.append(definition)

    for name in names:
        _visit(name, [])
    return sequence


def build_store(
    defaults: dict[str, str] | None = None,
    collection: Collection | None = None,
    environment: dict[str, str] | None = None,
    overrides: dict[str, str] | None = None,
) -> VariableStore:
    """Initial store: defaults < collection < environment < overrides."""
    store = VariableStore()
    store.push_scope("defaults", defaults)
    store.push_scope("collection", collection.variables if collection else None)
    store.push_scope("environment", environment)
    store.push_scope("overrides", overrides)
    return store

"""reqrun models - request definitions, resolved requests and run records."""

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


class HttpMethod(enum.Enum):
    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    CONNECT = "CONNECT"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    PATCH = "PATCH"

    @classmethod
    def parse(cls, value: str) -> "HttpMethod":
        """Case-insensitive lookup; raises ValueError for unknown verbs."""
        return cls(str(value).strip().upper())


AUTH_KINDS = ("none", "bearer", "basic", "api-key")
BODY_KINDS = ("text", "json", "graphql", "form", "binary")


@dataclass(frozen=True)
class AuthDescriptor:
    """Auth kind plus its template credential fields.

    - none:    disables inherited collection auth
    - bearer:  token
    - basic:   username, password
    - api-key: token, header (default X-API-Key)
    """

    kind: str
    token: str = ""
    username: str = ""
    password: str = ""
    header: str = "X-API-Key"


@dataclass(frozen=True)
class BodyDefinition:
    """Request body template.

    content depends on kind: str for text/binary, any JSON-like value for
    json, {"query": str, "variables": {...}} for graphql and a tuple of
    (name, value) pairs for form.
    """

    kind: str
    content: Any


@dataclass(frozen=True)
class ExtractionRule:
    path: str
    variable: str


@dataclass(frozen=True)
class RequestDefinition:
    name: str
    method: HttpMethod
    url: str
    headers: tuple[tuple[str, str], ...] = ()
    params: tuple[tuple[str, str], ...] = ()
    body: BodyDefinition | None = None
    auth: AuthDescriptor | None = None
    variables: Mapping[str, str] = field(default_factory=dict)
    extractions: tuple[ExtractionRule, ...] = ()
    depends: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolvedRequest:
    method: str
    url: str
    headers: tuple[tuple[str, str], ...]
    body: bytes | None = None

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup (first match)."""
        lower = name.lower()
        for key, value in self.headers:
            if key.lower() == lower:
                return value
        return None


@dataclass(frozen=True)
class Response:
    status_code: int
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
    elapsed_ms: float = 0

    def header(self, name: str) -> str | None:
        lower = name.lower()
        for key, value in self.headers:
            if key.lower() == lower:
                return value
        return None

    @property
    def content_type(self) -> str | None:
        return self.header("Content-Type")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Extraction:
    variable: str
    path: str
    value: str


class RunState(enum.Enum):
    PENDING = "pending"
    MATERIALIZING = "materializing"
    DISPATCHING = "dispatching"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RunResult:
    """One executed request: what was sent, what came back, what was bound."""

    index: int
    name: str
    request: ResolvedRequest
    response: Response | None
    extractions: tuple[Extraction, ...] = ()
    variables: Mapping[str, str] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunReport:
    results: list[RunResult] = field(default_factory=list)
    state: RunState = RunState.PENDING
    error: Exception | None = None
    failed_index: int | None = None

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETED


@dataclass(frozen=True)
class RunConfig:
    """Settings threaded into the orchestrator and transport for one run."""

    timeout: float = 30
    user_agent: str = "reqrun"
    verify: bool = True

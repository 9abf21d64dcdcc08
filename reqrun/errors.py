"""reqrun errors - everything that can stop a run."""


class ReqrunError(Exception):
    """Base class for all reqrun errors."""


class DefinitionError(ReqrunError):
    """A config, collection, environment or request file is missing or invalid."""


class UnresolvedVariable(ReqrunError):
    """A template references a name no scope defines."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unresolved variable '{name}'")


class ResolutionError(ReqrunError):
    """Materialization failed for one field of a request definition."""

    def __init__(self, field: str, name: str | None = None, reason: str | None = None):
        self.field = field
        self.name = name
        self.reason = reason
        if name is not None:
            message = f"cannot resolve {{{{{name}}}}} in {field}"
        else:
            message = f"cannot resolve {field}: {reason}"
        super().__init__(message)


class InvalidQuery(ReqrunError):
    """An extraction path is syntactically malformed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"invalid query '{path}': {reason}")


class ExtractionMiss(ReqrunError):
    """An extraction path matched nothing in the response body."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"query '{path}' matched nothing")


class ParseError(ReqrunError):
    """A response body could not be parsed as structured data."""

    def __init__(self, content_type: str | None, reason: str):
        self.content_type = content_type
        self.reason = reason
        super().__init__(f"cannot parse body ({content_type or 'no content type'}): {reason}")


class TransportError(ReqrunError):
    """The HTTP transport failed before a response was received."""

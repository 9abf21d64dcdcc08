"""reqrun variables - layered variable store.

Layers, lowest to highest precedence:

    defaults < collection < environment < overrides < extracted

Only the ``extracted`` layer is written during a run. Lower layers are
fixed once the run starts, so any request can be re-materialized from the
view it saw at its own turn.
"""

import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from reqrun.errors import UnresolvedVariable

log = logging.getLogger(__name__)

EXTRACTED = "extracted"

# Request-local variables sit directly below the first of these layers.
_ABOVE_LOCAL = ("overrides", EXTRACTED)


class Scope:
    """One named layer of the store."""

    def __init__(self, name: str, values: Mapping[str, str] | None = None):
        self.name = name
        self.values: dict[str, str] = {k: str(v) for k, v in (values or {}).items()}

    def __repr__(self) -> str:
        return f"Scope({self.name!r}, {len(self.values)} vars)"


class VariableStore:
    def __init__(self, scopes: list[Scope] | None = None):
        self._scopes: list[Scope] = list(scopes or [])

    @property
    def scopes(self) -> tuple[Scope, ...]:
        return tuple(self._scopes)

    def push_scope(self, name: str, values: Mapping[str, str] | None = None) -> Scope:
        """Add a layer above the existing ones (but below ``extracted``)."""
        scope = Scope(name, values)
        if self._scopes and self._scopes[-1].name == EXTRACTED:
            self._scopes.insert(len(self._scopes) - 1, scope)
        else:
            self._scopes.append(scope)
        return scope

    def _mutable(self) -> Scope:
        if not self._scopes or self._scopes[-1].name != EXTRACTED:
            self._scopes.append(Scope(EXTRACTED))
        return self._scopes[-1]

    def set(self, name: str, value: str) -> None:
        """Bind name in the extracted layer. Lower layers are never touched."""
        self._mutable().values[name] = value
        log.debug("Set %s in %s scope", name, EXTRACTED)

    def lookup(self, name: str) -> str:
        for scope in reversed(self._scopes):
            if name in scope.values:
                return scope.values[name]
        raise UnresolvedVariable(name)

    def __contains__(self, name: str) -> bool:
        return any(name in scope.values for scope in self._scopes)

    def _layers(self, local: Mapping[str, str] | None) -> Iterator[Mapping[str, str]]:
        if not local:
            for scope in self._scopes:
                yield scope.values
            return
        placed = False
        for scope in self._scopes:
            if not placed and scope.name in _ABOVE_LOCAL:
                yield local
                placed = True
            yield scope.values
        if not placed:
            yield local

    def merge_view(self, local: Mapping[str, str] | None = None) -> dict[str, str]:
        """Flatten the layers into one mapping; later layers win.

        ``local`` is a request-local layer placed below overrides and
        extracted values.
        """
        view: dict[str, str] = {}
        for layer in self._layers(local):
            view.update({k: str(v) for k, v in layer.items()})
        return view

    def snapshot(self, local: Mapping[str, str] | None = None) -> Mapping[str, str]:
        """Read-only copy of the merged view."""
        return MappingProxyType(self.merge_view(local))

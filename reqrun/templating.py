"""reqrun templating - {{name}} placeholder resolution."""

import re
from collections.abc import Mapping
from typing import Any

from reqrun.errors import UnresolvedVariable

PLACEHOLDER_RE = re.compile(r"\{\{(.+?)\}\}")


def find_placeholders(text: str) -> list[str]:
    """Return placeholder names in the order they appear."""
    if not isinstance(text, str):
        return []
    return PLACEHOLDER_RE.findall(text)


def resolve_template(text: str, view: Mapping[str, str]) -> str:
    """Resolve {{name}} placeholders in text against view.

    The name is everything between the braces, matched exactly: no
    trimming, no case folding. Substituted values are inserted literally
    and never scanned again, so a value containing "{{x}}" comes out as
    "{{x}}". The first name missing from view, scanning left to right,
    raises UnresolvedVariable.
    """
    if not isinstance(text, str):
        return text

    def _replace(m: re.Match) -> str:
        name = m.group(1)
        if name not in view:
            raise UnresolvedVariable(name)
        return str(view[name])

    return PLACEHOLDER_RE.sub(_replace, text)


def resolve_in_obj(obj: Any, view: Mapping[str, str]) -> Any:
    """Recursively resolve placeholders in dicts, lists, and strings.

    Keys are left as written; only values are templates.
    """
    if isinstance(obj, str):
        return resolve_template(obj, view)
    if isinstance(obj, dict):
        return {k: resolve_in_obj(v, view) for k, v in obj.items()}
    if isinstance(obj, list | tuple):
        return [resolve_in_obj(item, view) for item in obj]
    return obj

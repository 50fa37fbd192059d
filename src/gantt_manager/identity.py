"""
Identity resolution for client-supplied ids.

The Gantt editor assigns tentative ids to rows it has not saved yet and keeps
using them in later requests (a link created right after its tasks, a task
added under a freshly created parent). An IdentityResolver records which
durable id each tentative id received and rewrites references accordingly.
A resolver is scoped to one batch request or one import and never shared.
"""

import logging
from typing import Any, Dict, Iterable, Mapping

from .errors import ValidationError
from .models import coerce_fuzzy_int

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Maps tentative ids to the durable ids assigned on insertion."""

    def __init__(self):
        self._bindings: Dict[str, int] = {}

    @staticmethod
    def _key(tentative: Any) -> str:
        return str(tentative).strip()

    def bind(self, tentative: Any, durable: int) -> int:
        """
        Record that ``tentative`` now refers to ``durable``.

        Raises:
            ValidationError: If the tentative id is already bound to another id
        """
        key = self._key(tentative)
        if not key:
            raise ValidationError("Tentative id must not be empty")

        current = self._bindings.get(key)
        if current is not None and current != durable:
            raise ValidationError(
                f"Tentative id '{key}' is already bound to {current}",
                details={"tentative": key, "durable": current},
            )

        self._bindings[key] = durable
        logger.debug(f"Bound tentative id {key} -> {durable}")
        return durable

    def is_bound(self, tentative: Any) -> bool:
        return self._key(tentative) in self._bindings

    def resolve(self, value: Any) -> int:
        """
        Translate ``value`` into a durable id.

        Bound tentative ids win over their literal value; anything else must
        read as an integer id (empty values read as the root sentinel).
        """
        if value is not None:
            key = self._key(value)
            if key in self._bindings:
                return self._bindings[key]
        try:
            return coerce_fuzzy_int(value)
        except ValueError:
            raise ValidationError(f"Unknown tentative id '{value}'")

    def resolve_fields(self, data: Mapping[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
        """Copy of ``data`` with the named id fields resolved."""
        resolved = dict(data)
        for name in fields:
            if name in resolved and resolved[name] is not None:
                resolved[name] = self.resolve(resolved[name])
        return resolved

    def items(self) -> Dict[str, int]:
        return dict(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

"""Resolve a logical credential name through the document's reference lists."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional

from secenv.credentials import Credential, get_variant
from secenv.errors import (
    ConstructionError,
    InvalidReferenceListError,
    NameNotFoundError,
    NoValidCredentialError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reference:
    """Pointer to an attribute bag: ``document[group][name]``."""

    group: str
    name: str

    @classmethod
    def from_entry(cls, entry: Any) -> Optional["Reference"]:
        if not isinstance(entry, Mapping):
            return None
        group = entry.get("group")
        name = entry.get("name")
        if not isinstance(group, str) or not isinstance(name, str):
            return None
        return cls(group=group, name=name)

    def lookup(self, document: Mapping[str, Any]) -> tuple[Optional[Mapping[str, Any]], str]:
        """Return the attribute bag, or ``None`` with the reason it is missing."""
        group = document.get(self.group)
        if group is None:
            return None, f"no group {self.group!r}"
        if not isinstance(group, Mapping):
            return None, f"group {self.group!r} is not a mapping"
        attributes = group.get(self.name)
        if attributes is None:
            return None, f"no key {self.name!r} in group {self.group!r}"
        if not isinstance(attributes, Mapping):
            return None, f"key {self.name!r} in group {self.group!r} is not a mapping"
        return attributes, ""


def _references(name: str, document: Mapping[str, Any]) -> Iterator[tuple[int, Any]]:
    if name not in document:
        raise NameNotFoundError(f"key {name} not found")
    entries = document[name]
    if not isinstance(entries, list):
        raise InvalidReferenceListError(f"invalid key reference list for key {name}")
    yield from enumerate(entries)


def resolve(
    name: str,
    document: Mapping[str, Any],
    variant: str,
    *,
    now: float,
    min_validity: float,
) -> Credential:
    """Return the first reference for ``name`` that resolves and validates.

    References are tried in list order. Entries that are malformed, point at
    missing data, fail validation or ask for an unknown variant are skipped
    with a debug log line; only when none succeeds is an error raised.
    """
    for index, entry in _references(name, document):
        reference = Reference.from_entry(entry)
        if reference is None:
            logger.debug("key %s: reference #%d is malformed, skipping", name, index)
            continue
        attributes, reason = reference.lookup(document)
        if attributes is None:
            logger.debug("key %s: %s, skipping", name, reason)
            continue
        try:
            credential_type = get_variant(variant)
            return credential_type.build(attributes, now=now, min_validity=min_validity)
        except ConstructionError as exc:
            logger.debug("key %s: %s/%s rejected [%s]: %s", name, reference.group, reference.name, exc.kind, exc)
            continue
    raise NoValidCredentialError(f"no valid key configuration found for key {name}")


__all__ = ["Reference", "resolve"]

"""Credential variants and the registry used to construct them by name."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Mapping, TypeVar, cast

from secenv.errors import ConstructionError, TypeMismatchError, UnknownVariantError

_REGISTRY: Dict[str, type["Credential"]] = {}

_C = TypeVar("_C", bound=type["Credential"])


class Credential(ABC):
    """A typed credential that can render itself as environment variables.

    Instances are built fresh by the resolver on every poll and never mutated.
    """

    variant: ClassVar[str] = ""

    @classmethod
    @abstractmethod
    def build(cls, attributes: Mapping[str, Any], *, now: float, min_validity: float) -> "Credential":
        """Validate a raw attribute bag and return a credential.

        Parameters
        ----------
        attributes:
            The attribute mapping found under a ``(group, name)`` reference.
        now:
            Current time in epoch seconds.
        min_validity:
            Credentials expiring within ``now + min_validity`` are rejected
            so that one is never handed to a child only to expire before the
            next poll.
        """

    @abstractmethod
    def environment(self) -> Dict[str, str]:
        """Return the variables injected into the child environment."""

    @abstractmethod
    def equals(self, other: "Credential") -> bool:
        """Return whether ``other`` carries the same identity.

        Raises :class:`TypeMismatchError` when ``other`` is a different variant.
        """

    def _check_variant(self, other: "Credential") -> None:
        if type(other) is not type(self):
            raise TypeMismatchError(
                f"credential type changed on the fly: {self.variant!r} -> {getattr(other, 'variant', type(other).__name__)!r}"
            )


def register_variant(name: str) -> Callable[[_C], _C]:
    """Class decorator registering a :class:`Credential` subclass under ``name``."""

    def decorator(cls: _C) -> _C:
        existing = _REGISTRY.get(name)
        if existing is not None and existing is not cls:
            raise ValueError(f"Credential variant already registered: {name}")
        cls.variant = name
        _REGISTRY[name] = cls
        return cls

    return decorator


def get_variant(name: str) -> type[Credential]:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise UnknownVariantError(f"unsupported key type: {name}") from None


def available_variants() -> list[str]:
    return sorted(_REGISTRY)


def _read_expiration(attributes: Mapping[str, Any]) -> float:
    value = attributes.get("expiration")
    if value is None:
        return 0
    # bool is an int subclass; a JSON true/false is not a timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConstructionError("invalid expiration value")
    return value


def _read_string(attributes: Mapping[str, Any], field_name: str) -> str:
    if field_name not in attributes:
        raise ConstructionError(f"cannot find {field_name} value")
    value = attributes[field_name]
    if not isinstance(value, str) or "\x00" in value:
        raise ConstructionError(f"invalid {field_name} value")
    return value


@register_variant("symmetric")
@dataclass(frozen=True, eq=False)
class SymmetricCredential(Credential):
    """Key and secret pair exported as ``KEY`` and ``SECRET``."""

    KEY_VARIABLE: ClassVar[str] = "KEY"
    SECRET_VARIABLE: ClassVar[str] = "SECRET"

    key: str
    secret: str = field(repr=False)
    expiration: float = 0

    @classmethod
    def build(cls, attributes: Mapping[str, Any], *, now: float, min_validity: float) -> "SymmetricCredential":
        expiration = _read_expiration(attributes)
        if expiration != 0 and expiration <= now + min_validity:
            raise ConstructionError("key expired")
        return cls(
            key=_read_string(attributes, "key"),
            secret=_read_string(attributes, "secret"),
            expiration=expiration,
        )

    def environment(self) -> Dict[str, str]:
        return {self.KEY_VARIABLE: self.key, self.SECRET_VARIABLE: self.secret}

    def equals(self, other: Credential) -> bool:
        self._check_variant(other)
        other = cast(SymmetricCredential, other)
        # expiration is not part of identity; a renewal is not a rotation
        return self.key == other.key and self.secret == other.secret


__all__ = [
    "Credential",
    "SymmetricCredential",
    "available_variants",
    "get_variant",
    "register_variant",
]

"""Exception types raised by the credential supervisor."""
from __future__ import annotations


class SecenvError(RuntimeError):
    """Base class for supervisor failures. ``kind`` tags the failure in log lines."""

    kind = "error"


class DocumentError(SecenvError):
    kind = "document_unreadable"


class ResolutionError(SecenvError):
    """A logical name could not be turned into a credential on this poll."""

    kind = "resolution_failed"


class NameNotFoundError(ResolutionError):
    kind = "name_not_found"


class InvalidReferenceListError(ResolutionError):
    kind = "invalid_reference_list"


class NoValidCredentialError(ResolutionError):
    kind = "no_valid_credential"


class ConstructionError(SecenvError):
    kind = "construction_failed"


class UnknownVariantError(ConstructionError):
    kind = "unknown_variant"


class TypeMismatchError(SecenvError):
    """Raised when credentials of different variants are compared."""

    kind = "type_mismatch"


class StartError(SecenvError):
    kind = "start_failed"


__all__ = [
    "ConstructionError",
    "DocumentError",
    "InvalidReferenceListError",
    "NameNotFoundError",
    "NoValidCredentialError",
    "ResolutionError",
    "SecenvError",
    "StartError",
    "TypeMismatchError",
    "UnknownVariantError",
]

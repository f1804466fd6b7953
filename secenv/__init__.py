"""Credential-rotation aware process supervisor."""
from __future__ import annotations

from secenv.config import SupervisorSettings, load_settings
from secenv.credentials import Credential, SymmetricCredential, available_variants, get_variant, register_variant
from secenv.errors import (
    ConstructionError,
    DocumentError,
    InvalidReferenceListError,
    NameNotFoundError,
    NoValidCredentialError,
    ResolutionError,
    SecenvError,
    StartError,
    TypeMismatchError,
    UnknownVariantError,
)
from secenv.process import EXIT_SENTINEL, GRACE_PERIOD_SECONDS, ProcessHandle
from secenv.resolver import Reference, resolve
from secenv.supervisor import RotationSupervisor, SupervisorHooks

__all__ = [
    "ConstructionError",
    "Credential",
    "DocumentError",
    "EXIT_SENTINEL",
    "GRACE_PERIOD_SECONDS",
    "InvalidReferenceListError",
    "NameNotFoundError",
    "NoValidCredentialError",
    "ProcessHandle",
    "Reference",
    "ResolutionError",
    "RotationSupervisor",
    "SecenvError",
    "StartError",
    "SupervisorHooks",
    "SupervisorSettings",
    "SymmetricCredential",
    "TypeMismatchError",
    "UnknownVariantError",
    "available_variants",
    "get_variant",
    "load_settings",
    "register_variant",
    "resolve",
]

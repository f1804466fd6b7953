"""Loading of the external credential configuration document."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import yaml  # type: ignore[import-untyped]

from secenv.errors import DocumentError


def _decode_mapping(raw: str, source: Path) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as json_exc:
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError:
            raise DocumentError(f"cannot parse {source}: {json_exc}") from json_exc
    if not isinstance(data, dict):
        raise DocumentError(f"{source} does not contain a mapping at the top level")
    return data


def load_document(path: Path | str) -> Dict[str, Any]:
    """Read and decode the document at ``path``.

    The file is read on every call; nothing is cached between polls.
    """
    source = Path(path)
    try:
        raw = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DocumentError(f"cannot read {source}: {exc}") from exc
    return _decode_mapping(raw, source)


__all__ = ["load_document"]

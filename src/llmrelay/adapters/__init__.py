from __future__ import annotations

import importlib
import json
from pathlib import Path

from llmrelay.adapters.base import (
    Adapter,
    AdapterHandlers,
    AdapterOpts,
    AdapterSchema,
    ModelSchema,
)

__all__ = [
    "Adapter",
    "AdapterHandlers",
    "AdapterOpts",
    "AdapterSchema",
    "ModelSchema",
    "load_adapter",
]


def _load_adapter_file(*, path: Path) -> Adapter:
    """
    Load a declarative adapter from a JSON file.

    Parameters
    ----------
    path : Path
        JSON file describing the adapter (handlers cannot be expressed).

    Returns
    -------
    Adapter
        Validated adapter.
    """
    with open(path, "r", encoding="utf-8") as f:
        return Adapter.model_validate(json.load(f))


def _import_adapter(*, reference: str) -> Adapter:
    """
    Import an adapter object from a ``module:attribute`` reference.

    Parameters
    ----------
    reference : str
        Import path, e.g. ``my_project.adapters:openai``. The attribute may be
        an ``Adapter`` or a zero-argument factory returning one.

    Returns
    -------
    Adapter
        Imported adapter.
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Adapter reference must look like 'module:attribute', got '{reference}'")
    module = importlib.import_module(name=module_name)
    target = module
    for part in attribute.split("."):
        target = getattr(target, part)
    if callable(target) and not isinstance(target, Adapter):
        target = target()
    if not isinstance(target, Adapter):
        raise TypeError(f"'{reference}' does not resolve to an Adapter")
    return target


def load_adapter(reference: str) -> Adapter:
    """
    Resolve an adapter from a JSON file path or a ``module:attribute`` reference.

    Parameters
    ----------
    reference : str
        ``.json`` file path or import reference.

    Returns
    -------
    Adapter
        Loaded adapter.
    """
    path = Path(reference)
    if path.suffix == ".json":
        return _load_adapter_file(path=path)
    return _import_adapter(reference=reference)

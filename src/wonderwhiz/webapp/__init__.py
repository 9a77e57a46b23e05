"""WonderWhiz web application package.

Persistence names are importable eagerly; the FastAPI application is loaded on
first attribute access so ``uvicorn wonderwhiz.webapp:app`` keeps working.
"""
from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import Any, List

from . import persistence as _persistence

persistence = _persistence
__all__: List[str] = list(getattr(_persistence, "__all__", ()))

_IMPL_MODULE: ModuleType | None = None


def _load_impl() -> ModuleType:
    global _IMPL_MODULE
    if _IMPL_MODULE is None:
        _IMPL_MODULE = import_module(".application", __name__)
        __all__.extend(name for name in _IMPL_MODULE.__all__ if name not in __all__)
    return _IMPL_MODULE


def __getattr__(name: str) -> Any:
    if hasattr(_persistence, name):
        return getattr(_persistence, name)
    return getattr(_load_impl(), name)

"""Graph-fused passage retrieval."""

from typing import Any

__all__ = ["retrieve", "retrieve_structured"]


def retrieve(*args: Any, **kwargs: Any) -> list:
    from .pipeline import retrieve as _retrieve

    return _retrieve(*args, **kwargs)


def retrieve_structured(*args: Any, **kwargs: Any) -> dict:
    from .pipeline import retrieve_structured as _retrieve_structured

    return _retrieve_structured(*args, **kwargs)

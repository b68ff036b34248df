from __future__ import annotations

from typing import Iterable, Optional


class MarketCoreError(Exception):
    """Base class for engine errors."""


class UnknownDimensionError(MarketCoreError, ValueError):
    def __init__(self, name: str, allowed: Optional[Iterable[str]] = None):
        self.name = name
        self.allowed = sorted(allowed) if allowed is not None else None
        msg = f"Unknown dimension: {name!r}"
        if self.allowed:
            msg += f" (allowed: {', '.join(self.allowed)})"
        super().__init__(msg)


class UnknownPageError(MarketCoreError, KeyError):
    def __init__(self, page: str):
        self.page = page
        super().__init__(page)

    def __str__(self) -> str:
        return f"Unknown page: {self.page!r}"

from __future__ import annotations

from dataclasses import dataclass

from catalog import CatalogService
from config import Settings


@dataclass(frozen=True)
class AppContext:
    """Everything a tool handler may touch, built once at start-up."""

    settings: Settings
    catalog: CatalogService


__all__ = ["AppContext"]

"""API layer for catalog lookups and play-page resolution."""

from .catalog_api import CatalogAPI
from .play_api import PlayAPI

__all__ = ["CatalogAPI", "PlayAPI"]

"""Result sources: the contract plus the built-in reference sources."""

from .apps import AppCatalogSource, AppEntry
from .base import CancelToken, Source
from .calculator import CalculatorSource
from .web import WebSearchSource

__all__ = [
    "AppCatalogSource",
    "AppEntry",
    "CalculatorSource",
    "CancelToken",
    "Source",
    "WebSearchSource",
]

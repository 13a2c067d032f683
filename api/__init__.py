"""HTTP surface for the expense tracker."""

from .app import create_app
from .config import Settings

__all__ = ["Settings", "create_app"]

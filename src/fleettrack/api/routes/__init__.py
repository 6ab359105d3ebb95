"""Route group exports."""

from . import health, routes, trips

__all__ = ["trips", "routes", "health"]

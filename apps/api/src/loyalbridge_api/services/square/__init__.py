"""Square REST client exports."""

from .client import SquareAPIError, SquareClient  # noqa: F401

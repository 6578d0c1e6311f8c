"""Persistent state kept between runs."""
from .marker import MarkerStore

__all__ = ["MarkerStore"]

"""Routers package."""

from . import (
    health,
    shares,
    jobs,
    generations,
)

"""Content generator boundary.

Prompt construction and model invocation live outside this service; the API
only needs something that turns an intention into a scene/music code bundle.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request


@dataclass
class GeneratedBundle:
    scene_code: str
    music_code: str
    prompts: Optional[Dict[str, Any]] = None
    scene_model: str = ""
    music_model: str = ""


class GeneratorUnavailableError(RuntimeError):
    """No generator is configured, or the configured one cannot serve requests."""


class ContentGenerator(ABC):
    @abstractmethod
    async def generate(self, *, intention: str, duration_seconds: int) -> GeneratedBundle:
        raise NotImplementedError


class UnconfiguredContentGenerator(ContentGenerator):
    async def generate(self, *, intention: str, duration_seconds: int) -> GeneratedBundle:
        raise GeneratorUnavailableError("Content generation is not configured.")


def get_content_generator(request: Request) -> ContentGenerator:
    """FastAPI dependency; deployments install a generator on ``app.state.content_generator``."""
    generator = getattr(request.app.state, "content_generator", None)
    return generator or UnconfiguredContentGenerator()

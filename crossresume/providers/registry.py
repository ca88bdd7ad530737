"""Provider registry: maps aliases and slugs to provider instances."""
from __future__ import annotations

import functools
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from ..errors import UnknownProviderError
from .base import SessionProvider
from .claude import ClaudeCodeProvider
from .codex import CodexProvider
from .factory import FactoryProvider
from .gemini import GeminiProvider
from .vibe import VibeProvider

if TYPE_CHECKING:
    from ..config import ResolvedConfig

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Immutable table of supported providers.

    Every provider answers to both its slug (``claude-code``) and its
    short alias (``cc``). The table is fixed at construction.
    """

    def __init__(self, providers: Iterable[SessionProvider]) -> None:
        self._providers: tuple[SessionProvider, ...] = tuple(providers)
        lookup: dict[str, SessionProvider] = {}
        for provider in self._providers:
            for key in (provider.slug, provider.alias):
                if key in lookup:
                    raise ValueError(f"Duplicate provider key '{key}'")
                lookup[key] = provider
        self._lookup: Mapping[str, SessionProvider] = MappingProxyType(lookup)

    def __iter__(self):
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def providers(self) -> tuple[SessionProvider, ...]:
        return self._providers

    def find(self, key: str) -> SessionProvider | None:
        """Look up by alias or slug, or None if not registered."""
        return self._lookup.get(key.strip().lower())

    def get(self, key: str) -> SessionProvider:
        """Look up by alias or slug, raising UnknownProviderError if missing."""
        provider = self.find(key)
        if provider is None:
            raise UnknownProviderError(key, self.known_aliases())
        return provider

    def known_aliases(self) -> list[str]:
        return [p.alias for p in self._providers]

    def availability_report(self, config: ResolvedConfig) -> dict[str, bool]:
        """Mapping of provider slug -> detected, for every provider."""
        report: dict[str, bool] = {}
        for provider in self._providers:
            home: Path = config.home_for(provider)
            report[provider.slug] = provider.detect(home).installed
        detected = [slug for slug, ok in report.items() if ok]
        logger.debug("Detected providers: %s", ", ".join(detected) or "none")
        return report


@functools.lru_cache(maxsize=1)
def default_registry() -> ProviderRegistry:
    """The process-wide registry of built-in providers."""
    return ProviderRegistry([
        ClaudeCodeProvider(),
        CodexProvider(),
        GeminiProvider(),
        VibeProvider(),
        FactoryProvider(),
    ])

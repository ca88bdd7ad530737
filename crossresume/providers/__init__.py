"""Session providers: one reader and writer per coding agent."""

from .base import SessionProvider
from .claude import ClaudeCodeProvider
from .codex import CodexProvider
from .factory import FactoryProvider
from .gemini import GeminiProvider
from .registry import ProviderRegistry, default_registry
from .vibe import VibeProvider

__all__ = [
    "ClaudeCodeProvider",
    "CodexProvider",
    "FactoryProvider",
    "GeminiProvider",
    "ProviderRegistry",
    "SessionProvider",
    "VibeProvider",
    "default_registry",
]

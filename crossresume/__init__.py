"""crossresume: move coding-agent sessions between providers."""

__version__ = "0.1.0"

from .client import DEFAULT_BASE_URL, CompletionClient

__all__ = ["DEFAULT_BASE_URL", "CompletionClient"]

"""Secret handling helpers."""
from .secrets import MissingSecretError, is_placeholder, require_secret, resolve_secret

__all__ = ["MissingSecretError", "is_placeholder", "require_secret", "resolve_secret"]

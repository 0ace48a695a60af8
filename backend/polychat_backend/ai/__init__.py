from .models import DEFAULT_MODEL, MODELS, is_supported_model, resolve_model
from .client import OpenRouterAPIError

__all__ = ["DEFAULT_MODEL", "MODELS", "OpenRouterAPIError", "is_supported_model", "resolve_model"]

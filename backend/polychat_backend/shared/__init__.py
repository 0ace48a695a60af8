from .routes import shared_bp

__all__ = ["shared_bp"]

from .routes import uploads_bp

__all__ = ["uploads_bp"]

from .routes import auth_bp
from .utils import AuthContext, AuthError, require_firebase_user

__all__ = ["auth_bp", "AuthContext", "AuthError", "require_firebase_user"]

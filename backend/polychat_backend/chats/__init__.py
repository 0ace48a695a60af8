from .context import assemble_conversation, build_context, conversation_path
from .routes import chats_bp

__all__ = ["chats_bp", "assemble_conversation", "build_context", "conversation_path"]

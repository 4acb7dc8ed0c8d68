from .note import Note
from .user import User

__all__ = ["Note", "User"]

"""User lookups used for precondition checks and caller identification."""

from .models import User
from .repository import UserRepository

__all__ = ["User", "UserRepository"]

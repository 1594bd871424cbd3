"""
Routers package initialization.
"""
from . import chat
from . import logs

__all__ = [
    "chat",
    "logs",
]

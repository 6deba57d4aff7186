"""
Secure Pipeline Routes Package
"""

from .session import build_session_router

__all__ = ['build_session_router']

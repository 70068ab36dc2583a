"""Presentation layer for the Command Center backend."""

from .app import create_app, AsyncExecutor

__all__ = ['create_app', 'AsyncExecutor']

from .app import create_app, get_caller

__all__ = ["create_app", "get_caller"]

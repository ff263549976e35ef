# app/__init__.py
from .config import config
from .logger import get_logger

__all__ = ["config", "get_logger"]

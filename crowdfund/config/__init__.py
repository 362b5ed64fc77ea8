# crowdfund/config/__init__.py
from __future__ import annotations

from .config import BaseConfig, DevelopmentConfig, ProductionConfig, TestingConfig

__all__ = [
    "BaseConfig",
    "DevelopmentConfig",
    "ProductionConfig",
    "TestingConfig",
]

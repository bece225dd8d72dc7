"""
Core module - configuration, shared types, errors, scheduling.

Components:
- config: Settings management via pydantic-settings
- types: Semantic feature structures and layer identifiers
- errors: Engine exception hierarchy
- scheduler: Background task loop
- logging: Structured logging setup
"""

from strata.core.config import EngineConfig, Settings
from strata.core.types import Layer, SemanticFeatures

__all__ = ["EngineConfig", "Settings", "Layer", "SemanticFeatures"]

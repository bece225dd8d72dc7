"""Shared typing aliases used across modules."""

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeAlias

JSONDict: TypeAlias = dict[str, Any]
Metadata: TypeAlias = dict[str, Any]
Clock: TypeAlias = Callable[[], datetime]

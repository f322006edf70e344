"""Admission-control primitives."""

from .group import LimiterFactory, LimiterGroup, RegistryEntry
from .limiter import Limiter

__all__ = ["Limiter", "LimiterFactory", "LimiterGroup", "RegistryEntry"]

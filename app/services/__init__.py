"""Comparison services, importable from one place."""
from .token_service import TokenService
from .platform_adapters import (
    ComparisonError,
    PlatformAdapter,
    PsnAdapter,
    SteamAdapter,
    XboxAdapter,
)
from .achievement_compare_service import AchievementCompareService
from .comparison_service import ComparisonService, compute_common_games

__all__ = [
    'TokenService',
    'ComparisonError',
    'PlatformAdapter',
    'PsnAdapter',
    'SteamAdapter',
    'XboxAdapter',
    'AchievementCompareService',
    'ComparisonService',
    'compute_common_games',
]

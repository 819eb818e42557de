"""Comparison data model.

Plain dataclasses with ``to_dict()`` producing the camelCase JSON the web
layer and CLI emit. Optional fields that are unknown are *omitted* from the
dict rather than serialized as ``null``.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from gametrack import round_half_up


class Platform(str, Enum):
    """Platforms a profile comparison can run on."""

    STEAM = 'steam'
    PSN = 'psn'
    XBOX = 'xbox'

    @classmethod
    def parse(cls, value) -> Optional['Platform']:
        """Return the member for *value* (case-insensitive) or ``None``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or '').strip().lower())
        except ValueError:
            return None

    @property
    def label(self) -> str:
        return {'steam': 'Steam', 'psn': 'PSN', 'xbox': 'Xbox'}[self.value]


@dataclass
class ComparisonGame:
    title: str
    cover_url: Optional[str]
    achievement_progress: float
    playtime: float
    platform: str
    console: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            'title': self.title,
            'coverUrl': self.cover_url,
            'achievementProgress': self.achievement_progress,
            'playtime': self.playtime,
            'platform': self.platform,
        }
        if self.console is not None:
            d['console'] = self.console
        return d


@dataclass
class ComparisonStats:
    total_games: int
    total_achievements: int
    total_playtime: float
    completion_rate: int
    platform_specific: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_games(cls, games: List[ComparisonGame], total_achievements: int,
                   platform_specific: Optional[Dict[str, Any]] = None,
                   progress_values: Optional[List[float]] = None) -> 'ComparisonStats':
        """Aggregate stats for *games*.

        Args:
            games: The profile's games; gives ``totalGames`` and playtime.
            total_achievements: Absolute earned achievement count.
            platform_specific: Extra per-platform fields; ``None`` values
                are dropped.
            progress_values: Progress values the completion rate averages
                over. Defaults to every game's ``achievement_progress``.
        """
        if progress_values is None:
            progress_values = [g.achievement_progress for g in games]
        completion = (int(round_half_up(sum(progress_values) / len(progress_values)))
                      if progress_values else 0)
        playtime = round_half_up(sum(g.playtime for g in games), 1)
        extras = {k: v for k, v in (platform_specific or {}).items() if v is not None}
        return cls(
            total_games=len(games),
            total_achievements=int(total_achievements),
            total_playtime=playtime,
            completion_rate=completion,
            platform_specific=extras,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalGames': self.total_games,
            'totalAchievements': self.total_achievements,
            'totalPlaytime': self.total_playtime,
            'completionRate': self.completion_rate,
            'platformSpecific': dict(self.platform_specific),
        }


@dataclass
class ComparisonProfile:
    platform: str
    platform_id: str
    username: str
    avatar_url: Optional[str]
    stats: ComparisonStats
    games: List[ComparisonGame] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'platform': self.platform,
            'platformId': self.platform_id,
            'username': self.username,
            'avatarUrl': self.avatar_url,
            'stats': self.stats.to_dict(),
            'games': [g.to_dict() for g in self.games],
        }


@dataclass
class CommonGame:
    title: str
    cover_url: Optional[str]
    user_progress: float
    friend_progress: float
    user_playtime: float
    friend_playtime: float
    console: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            'title': self.title,
            'coverUrl': self.cover_url,
            'userProgress': self.user_progress,
            'friendProgress': self.friend_progress,
            'userPlaytime': self.user_playtime,
            'friendPlaytime': self.friend_playtime,
        }
        if self.console is not None:
            d['console'] = self.console
        return d


@dataclass
class ComparisonResult:
    success: bool
    user: Optional[ComparisonProfile] = None
    friend: Optional[ComparisonProfile] = None
    common_games: Optional[List[CommonGame]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, user: ComparisonProfile, friend: ComparisonProfile,
           common_games: List[CommonGame]) -> 'ComparisonResult':
        return cls(True, user=user, friend=friend, common_games=common_games)

    @classmethod
    def failure(cls, error: str) -> 'ComparisonResult':
        return cls(False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {'success': False, 'error': self.error}
        return {
            'success': True,
            'user': self.user.to_dict(),
            'friend': self.friend.to_dict(),
            'commonGames': [g.to_dict() for g in self.common_games or []],
        }


@dataclass
class ProfileResult:
    """Outcome of loading the caller's own comparison profile."""
    success: bool
    profile: Optional[ComparisonProfile] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {'success': False, 'error': self.error}
        return {'success': True, 'profile': self.profile.to_dict()}


# ---------------------------------------------------------------------------
# Achievement comparison
# ---------------------------------------------------------------------------

@dataclass
class ComparisonAchievement:
    id: str
    name: str
    description: str
    user_unlocked: bool = False
    friend_unlocked: bool = False
    icon_url: Optional[str] = None
    icon_gray_url: Optional[str] = None
    user_unlock_date: Optional[str] = None
    friend_unlock_date: Optional[str] = None
    rarity_percentage: Optional[float] = None
    trophy_type: Optional[str] = None
    gamerscore: Optional[int] = None
    is_hidden: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'userUnlocked': self.user_unlocked,
            'friendUnlocked': self.friend_unlocked,
        }
        optional = {
            'iconUrl': self.icon_url,
            'iconGrayUrl': self.icon_gray_url,
            'userUnlockDate': self.user_unlock_date,
            'friendUnlockDate': self.friend_unlock_date,
            'rarityPercentage': self.rarity_percentage,
            'trophyType': self.trophy_type,
            'gamerscore': self.gamerscore,
            'isHidden': self.is_hidden,
        }
        d.update({k: v for k, v in optional.items() if v is not None})
        return d


@dataclass
class AchievementSide:
    """One player's column in an achievement comparison."""
    username: str
    avatar_url: Optional[str]
    earned_count: int
    total_count: int

    @property
    def progress(self) -> int:
        if not self.total_count:
            return 0
        return int(round_half_up(self.earned_count / self.total_count * 100))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'username': self.username,
            'avatarUrl': self.avatar_url,
            'earnedCount': self.earned_count,
            'totalCount': self.total_count,
            'progress': self.progress,
        }


@dataclass
class AchievementComparisonResult:
    success: bool
    platform: Optional[str] = None
    title: Optional[str] = None
    cover_url: Optional[str] = None
    user: Optional[AchievementSide] = None
    friend: Optional[AchievementSide] = None
    achievements: List[ComparisonAchievement] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, platform: Optional[str] = None) -> 'AchievementComparisonResult':
        return cls(False, platform=platform, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {'success': False, 'error': self.error}
        d = {
            'success': True,
            'platform': self.platform,
            'game': {'title': self.title, 'coverUrl': self.cover_url},
            'user': self.user.to_dict(),
            'friend': self.friend.to_dict(),
            'achievements': [a.to_dict() for a in self.achievements],
        }
        if self.error:
            d['error'] = self.error
        return d

"""Per-platform adapters behind the profile comparison.

Each :class:`PlatformAdapter` knows how to

* find the caller's credential for live lookups (``get_credential``),
* resolve another player's identifier to an account (``search``),
* fetch that player's library live and normalize it
  (``fetch_friend_library``),
* build the caller's own profile from the synced library in the database
  (``fetch_self_library``).

:class:`app.services.ComparisonService` drives them through one shared flow.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from gametrack import minutes_to_hours, parse_iso_duration, percentage
from platform_clients import (
    InvalidSteamIdError,
    SteamPrivacyError,
    calculate_total_trophies,
    get_steam_header_url,
    is_pc_only_title,
    schema_achievements,
    validate_steam_id,
    xbox_console_label,
)
from app.helpers import BatchThrottle, best_effort
from app.models import ComparisonGame, ComparisonProfile, ComparisonStats, Platform

logger = logging.getLogger('gametrack.compare')

PRIVATE_LIBRARY = "This user's game library is private or could not be accessed."


class ComparisonError(Exception):
    """Expected comparison failure; ``message`` is shown to the caller as-is."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PlatformAdapter(ABC):
    """One comparison platform."""

    platform: Platform
    # SQL LIKE pattern matching this platform's rows in ``user_games``
    user_games_pattern: str = ''
    # Steam IDs can be compared before any network call
    self_check_before_search = False
    # Whether looking another player up needs the caller's credential
    search_requires_credential = True

    def __init__(self, db_module, tokens) -> None:
        """
        Args:
            db_module: The imported ``database`` module.
            tokens:    :class:`app.services.TokenService` for linked
                credentials.
        """
        self._db = db_module
        self._tokens = tokens

    @property
    def label(self) -> str:
        return self.platform.label

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def not_connected_message(self) -> str:
        return (f"{self.label} account not connected. "
                f"Please link your {self.label} account first.")

    def self_comparison_message(self) -> str:
        return (f"You can't compare with yourself! Try searching for a "
                f"friend's {self.label} profile instead.")

    @abstractmethod
    def not_found_message(self, identifier: str) -> str:
        """Message when *identifier* resolves to no account during a compare."""

    def search_not_found_message(self, identifier: str) -> str:
        return self.not_found_message(identifier)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @abstractmethod
    def get_credential(self, db, user_id: int) -> Any:
        """Return what live calls for *user_id* need.

        Raises:
            ComparisonError: When the platform is not linked.
        """

    @abstractmethod
    def own_identifier(self, user) -> Optional[str]:
        """The caller's stored identifier compared against a resolved account."""

    def resolve_identifier(self, identifier: str) -> str:
        """Normalize user input before the search."""
        return identifier

    @abstractmethod
    def search(self, credential: Any, identifier: str) -> Optional[Dict[str, Any]]:
        """Look another player up; ``None`` when no account matches."""

    @abstractmethod
    def account_identifier(self, account: Dict[str, Any]) -> str:
        """Identifier of a searched account comparable with ``own_identifier``."""

    def search_record(self, account: Dict[str, Any]) -> Dict[str, Any]:
        """Public shape of a searched account."""
        return dict(account)

    # ------------------------------------------------------------------
    # Libraries
    # ------------------------------------------------------------------

    @abstractmethod
    def fetch_friend_library(self, credential: Any, account: Dict[str, Any]) -> ComparisonProfile:
        """Fetch and normalize another player's library.

        Raises:
            ComparisonError: When the library is private or unreachable.
        """

    @abstractmethod
    def self_identity(self, user) -> Tuple[str, Optional[str], str]:
        """``(username, avatar_url, platform_id)`` for the caller."""

    def self_platform_specific(self, db, user) -> Dict[str, Any]:
        return {}

    def fetch_self_library(self, db, user) -> ComparisonProfile:
        """Build the caller's profile from their synced ``user_games`` rows."""
        rows = self._db.get_user_games_for_platform(db, user.id, self.user_games_pattern)
        games: List[ComparisonGame] = []
        total_achievements = 0
        for row in rows:
            if row.game is None:
                continue
            games.append(ComparisonGame(
                title=row.game.title,
                cover_url=row.game.cover_url,
                achievement_progress=row.completion_percentage or 0,
                playtime=row.playtime_hours or 0,
                platform=self.platform.value,
            ))
            total_achievements += row.achievements_earned or 0

        username, avatar_url, platform_id = self.self_identity(user)
        return ComparisonProfile(
            platform=self.platform.value,
            platform_id=platform_id,
            username=username,
            avatar_url=avatar_url,
            stats=ComparisonStats.from_games(
                games, total_achievements, self.self_platform_specific(db, user)),
            games=games,
        )


# ---------------------------------------------------------------------------
# PlayStation Network
# ---------------------------------------------------------------------------

class PsnAdapter(PlatformAdapter):
    platform = Platform.PSN
    user_games_pattern = 'PlayStation%'

    def __init__(self, db_module, tokens, psn_client) -> None:
        super().__init__(db_module, tokens)
        self.client = psn_client

    def not_found_message(self, identifier: str) -> str:
        return f'No PSN user found with username "{identifier}"'

    def get_credential(self, db, user_id: int) -> str:
        token = self._tokens.get_valid_access_token(db, user_id)
        if not token:
            raise ComparisonError(self.not_connected_message())
        return token

    def own_identifier(self, user) -> Optional[str]:
        return user.psn_online_id if user else None

    def search(self, credential: str, identifier: str) -> Optional[Dict[str, Any]]:
        return self.client.search_user(credential, identifier)

    def account_identifier(self, account: Dict[str, Any]) -> str:
        return account.get('onlineId', '')

    def _trophy_level(self, token: str, account_id: str) -> Optional[int]:
        summary = self.client.get_trophy_summary(token, account_id)
        return int(summary.get('trophyLevel')) or None

    def fetch_friend_library(self, credential: str, account: Dict[str, Any]) -> ComparisonProfile:
        account_id = account['accountId']
        trophy_level = best_effort(self._trophy_level, credential, account_id)

        try:
            titles = self.client.get_trophy_titles(credential, account_id)
        except Exception as e:
            logger.warning("PSN trophy titles for %s unavailable: %s", account_id, e)
            raise ComparisonError(PRIVATE_LIBRARY) from e

        played = best_effort(self.client.get_played_games, credential, account_id, default=[])
        played_by_name = {(p.get('name') or '').lower().strip(): p for p in played}

        games = []
        total_trophies = 0
        for title in titles:
            name = title.get('trophyTitleName', '')
            match = played_by_name.get(name.lower().strip())
            minutes = parse_iso_duration(match.get('playDuration')) if match else 0
            games.append(ComparisonGame(
                title=name,
                cover_url=title.get('trophyTitleIconUrl') or None,
                achievement_progress=title.get('progress') or 0,
                playtime=minutes_to_hours(minutes),
                platform=self.platform.value,
                console=title.get('trophyTitlePlatform') or 'PlayStation',
            ))
            total_trophies += calculate_total_trophies(title.get('earnedTrophies'))

        stats = ComparisonStats.from_games(games, total_trophies, {
            'trophyLevel': trophy_level,
            'isPsPlus': account.get('isPsPlus'),
        })
        return ComparisonProfile(
            platform=self.platform.value,
            platform_id=account.get('onlineId', ''),
            username=account.get('onlineId', ''),
            avatar_url=account.get('avatarUrl'),
            stats=stats,
            games=games,
        )

    def self_identity(self, user):
        return (user.psn_online_id or 'You', user.psn_avatar_url, user.psn_online_id or '')

    def _own_ps_plus(self, db, user) -> Optional[bool]:
        token = self._tokens.get_valid_access_token(db, user.id)
        if not token:
            return None
        return self.client.get_profile(token, user.psn_account_id)['isPlus']

    def self_platform_specific(self, db, user) -> Dict[str, Any]:
        is_ps_plus = None
        if user.psn_account_id:
            is_ps_plus = best_effort(self._own_ps_plus, db, user)
        return {'trophyLevel': user.psn_trophy_level or None, 'isPsPlus': is_ps_plus}


# ---------------------------------------------------------------------------
# Xbox
# ---------------------------------------------------------------------------

class XboxAdapter(PlatformAdapter):
    platform = Platform.XBOX
    user_games_pattern = 'Xbox%'

    def __init__(self, db_module, tokens, xbox_client) -> None:
        super().__init__(db_module, tokens)
        self.client = xbox_client

    def not_found_message(self, identifier: str) -> str:
        return (f'No Xbox user found with gamertag "{identifier}". Make sure '
                f"you're entering the exact gamertag (case-insensitive). If they "
                f"have a suffix like #1234, try without it first.")

    def search_not_found_message(self, identifier: str) -> str:
        return f'No Xbox user found with gamertag "{identifier}"'

    def get_credential(self, db, user_id: int) -> str:
        api_key = self._tokens.get_valid_api_key(db, user_id)
        if not api_key:
            raise ComparisonError(self.not_connected_message())
        return api_key

    def own_identifier(self, user) -> Optional[str]:
        return user.xbox_gamertag if user else None

    def search(self, credential: str, identifier: str) -> Optional[Dict[str, Any]]:
        return self.client.search_by_gamertag(identifier, credential)

    def account_identifier(self, account: Dict[str, Any]) -> str:
        return account.get('gamertag', '')

    def search_record(self, account: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'xuid': account.get('xuid', ''),
            'gamertag': account.get('gamertag', ''),
            'avatarUrl': account.get('gamerPicture') or None,
            'gamerscore': account.get('gamerscore', 0),
            'tier': account.get('accountTier') or 'Unknown',
        }

    def fetch_friend_library(self, credential: str, account: Dict[str, Any]) -> ComparisonProfile:
        try:
            titles = self.client.get_title_history(account['xuid'], credential)
        except Exception as e:
            logger.warning("Xbox title history for %s unavailable: %s", account.get('xuid'), e)
            raise ComparisonError(PRIVATE_LIBRARY) from e

        games = []
        total_achievements = 0
        for title in titles:
            if is_pc_only_title(title):
                continue
            progress = title.get('achievement') or {}
            games.append(ComparisonGame(
                title=title.get('name', ''),
                cover_url=title.get('displayImage') or None,
                achievement_progress=progress.get('progressPercentage') or 0,
                playtime=0,
                platform=self.platform.value,
                console=xbox_console_label(title.get('devices')),
            ))
            total_achievements += progress.get('currentAchievements') or 0

        stats = ComparisonStats.from_games(games, total_achievements, {
            'gamerscore': account.get('gamerscore'),
            'tier': account.get('accountTier') or None,
        })
        return ComparisonProfile(
            platform=self.platform.value,
            platform_id=account.get('gamertag', ''),
            username=account.get('gamertag', ''),
            avatar_url=account.get('gamerPicture') or None,
            stats=stats,
            games=games,
        )

    def self_identity(self, user):
        return (user.xbox_gamertag or 'You', user.xbox_avatar_url, user.xbox_gamertag or '')

    def _own_tier(self, db, user) -> Optional[str]:
        api_key = self._tokens.get_valid_api_key(db, user.id)
        if not api_key:
            return None
        return self.client.get_my_profile(api_key).get('accountTier') or None

    def self_platform_specific(self, db, user) -> Dict[str, Any]:
        tier = best_effort(self._own_tier, db, user) if user.xbox_xuid else None
        return {'gamerscore': user.xbox_gamerscore or None, 'tier': tier}


# ---------------------------------------------------------------------------
# Steam
# ---------------------------------------------------------------------------

class SteamAdapter(PlatformAdapter):
    platform = Platform.STEAM
    user_games_pattern = 'Steam'
    self_check_before_search = True
    search_requires_credential = False

    def __init__(self, db_module, tokens, steam_client,
                 throttle: Optional[BatchThrottle] = None,
                 achievement_limit: int = 20) -> None:
        """
        Args:
            steam_client:      :class:`platform_clients.SteamAPIClient`.
            throttle:          Batching for per-game achievement lookups
                               (default 5 concurrent, 200 ms apart).
            achievement_limit: Most games whose achievements are fetched.
        """
        super().__init__(db_module, tokens)
        self.client = steam_client
        self.throttle = throttle or BatchThrottle(max_concurrent=5, delay=0.2)
        self.achievement_limit = achievement_limit

    def not_found_message(self, identifier: str) -> str:
        return f'No Steam user found with ID "{identifier}"'

    def get_credential(self, db, user_id: int) -> str:
        user = self._db.get_user(db, user_id)
        if not user or not user.steam_id:
            raise ComparisonError(self.not_connected_message())
        return user.steam_id

    def own_identifier(self, user) -> Optional[str]:
        return user.steam_id if user else None

    def resolve_identifier(self, identifier: str) -> str:
        try:
            return validate_steam_id(identifier)
        except InvalidSteamIdError as e:
            raise ComparisonError(e.message) from e

    def search(self, credential: Any, identifier: str) -> Optional[Dict[str, Any]]:
        return self.client.get_player_summary(identifier)

    def account_identifier(self, account: Dict[str, Any]) -> str:
        return account.get('steamid', '')

    def search_record(self, account: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'steamId': account.get('steamid', ''),
            'personaName': account.get('personaname', ''),
            'avatarUrl': account.get('avatarfull') or None,
            'profileUrl': account.get('profileurl', ''),
        }

    def _achievement_summary(self, steam_id: str, game: Dict[str, Any]) -> Dict[str, int]:
        app_id = game['appid']
        unlocked = self.client.get_player_achievements(steam_id, app_id)
        total = len(schema_achievements(self.client.get_game_schema(app_id)))
        earned = sum(1 for a in unlocked if a.get('achieved') == 1)
        return {
            'appid': app_id,
            'earned': earned,
            'total': total,
            'percentage': percentage(earned, total),
        }

    def fetch_friend_library(self, credential: Any, account: Dict[str, Any]) -> ComparisonProfile:
        steam_id = account['steamid']
        try:
            owned = self.client.get_owned_games(steam_id)
        except SteamPrivacyError as e:
            raise ComparisonError("This user's game library is private. "
                                  "They need to set their game details to public.") from e
        except Exception as e:
            logger.warning("Steam library for %s unavailable: %s", steam_id, e)
            raise ComparisonError("Failed to fetch user's game library.") from e

        candidates = [g for g in owned if g.get('has_community_visible_stats')]
        candidates = candidates[:self.achievement_limit]
        summaries = self.throttle.map(
            lambda game: self._achievement_summary(steam_id, game), candidates)
        achievement_data = {s['appid']: s for s in summaries if s and s['total'] > 0}

        games = []
        total_achievements = 0
        rated_progress = []
        for game in owned:
            app_id = game.get('appid')
            data = achievement_data.get(app_id)
            games.append(ComparisonGame(
                title=game.get('name', ''),
                cover_url=get_steam_header_url(app_id),
                achievement_progress=data['percentage'] if data else 0,
                playtime=minutes_to_hours(game.get('playtime_forever') or 0),
                platform=self.platform.value,
                console='PC',
            ))
            if data:
                total_achievements += data['earned']
                rated_progress.append(data['percentage'])

        return ComparisonProfile(
            platform=self.platform.value,
            platform_id=steam_id,
            username=account.get('personaname', ''),
            avatar_url=account.get('avatarfull') or None,
            stats=ComparisonStats.from_games(games, total_achievements,
                                             progress_values=rated_progress),
            games=games,
        )

    def self_identity(self, user):
        return (user.steam_persona_name or 'You', user.steam_avatar_url, user.steam_id or '')

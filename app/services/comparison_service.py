"""Cross-platform profile comparison: the caller's synced library against
another player's live library on the same platform."""
import logging
from typing import Any, Dict, List, Optional

from app.helpers import BatchThrottle, error_message
from app.models import (
    AchievementComparisonResult,
    CommonGame,
    ComparisonGame,
    ComparisonResult,
    Platform,
    ProfileResult,
)
from app.services.achievement_compare_service import AchievementCompareService
from app.services.platform_adapters import (
    ComparisonError,
    PlatformAdapter,
    PsnAdapter,
    SteamAdapter,
    XboxAdapter,
)
from app.services.token_service import TokenService

logger = logging.getLogger('gametrack.compare')

NOT_AUTHENTICATED = 'Not authenticated'
INVALID_PLATFORM = 'Invalid platform'


def compute_common_games(user_games: List[ComparisonGame],
                         friend_games: List[ComparisonGame]) -> List[CommonGame]:
    """Join two libraries on case-insensitive exact title.

    Entries follow the friend's library order, one per title, then are
    stably sorted by the caller's progress, highest first. Cover art comes
    from the friend's entry; the console falls back to the caller's.
    """
    mine = {g.title.lower(): g for g in user_games}
    seen = set()
    common = []
    for theirs in friend_games:
        key = theirs.title.lower()
        if key not in mine or key in seen:
            continue
        seen.add(key)
        own = mine[key]
        common.append(CommonGame(
            title=theirs.title,
            cover_url=theirs.cover_url,
            user_progress=own.achievement_progress or 0,
            friend_progress=theirs.achievement_progress,
            user_playtime=own.playtime or 0,
            friend_playtime=theirs.playtime,
            console=theirs.console or own.console,
        ))
    common.sort(key=lambda g: g.user_progress, reverse=True)
    return common


class ComparisonService:
    """Compares the caller's library with another player's on Steam, PSN or
    Xbox.

    All public methods accept a *db* SQLAlchemy session as the first argument
    so that callers (Flask route handlers, the CLI) control the session
    lifecycle. They never raise: failures come back as result objects with
    ``success`` false and an ``error`` message.
    """

    def __init__(self, db_module, steam_client, psn_client, xbox_client,
                 throttle: Optional[BatchThrottle] = None,
                 achievement_limit: int = 20) -> None:
        """
        Args:
            db_module:         The imported ``database`` module.
            steam_client:      :class:`platform_clients.SteamAPIClient`.
            psn_client:        :class:`platform_clients.PSNClient`.
            xbox_client:       :class:`platform_clients.XboxAPIClient`.
            throttle:          Batching for Steam achievement lookups.
            achievement_limit: Most Steam games whose achievements are
                               fetched per comparison.
        """
        self._db = db_module
        self.tokens = TokenService(db_module, psn_client)
        self.adapters: Dict[Platform, PlatformAdapter] = {
            Platform.STEAM: SteamAdapter(db_module, self.tokens, steam_client,
                                         throttle=throttle,
                                         achievement_limit=achievement_limit),
            Platform.PSN: PsnAdapter(db_module, self.tokens, psn_client),
            Platform.XBOX: XboxAdapter(db_module, self.tokens, xbox_client),
        }
        self.achievements = AchievementCompareService(db_module, self.adapters)

    @classmethod
    def from_config(cls, config: Dict[str, Any], db_module=None) -> 'ComparisonService':
        """Build the service and its platform clients from ``load_config()``
        output."""
        from platform_clients import PSNClient, SteamAPIClient, XboxAPIClient
        if db_module is None:
            import database as db_module

        timeout = config.get('request_timeout', 10)
        throttle = BatchThrottle(
            max_concurrent=int(config.get('steam_batch_size', 5)),
            delay=float(config.get('steam_batch_delay', 0.2)),
            batch_timeout=config.get('batch_timeout', 60),
        )
        return cls(
            db_module,
            SteamAPIClient(config.get('steam_api_key', ''), timeout=timeout),
            PSNClient(timeout=timeout),
            XboxAPIClient(timeout=timeout),
            throttle=throttle,
            achievement_limit=int(config.get('steam_achievement_limit', 20)),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search_user(self, db, user_id: Optional[int], platform: str,
                    identifier: str) -> Dict[str, Any]:
        """Look up another player on *platform*.

        Returns:
            ``{'success': True, 'user': {...}}`` with the platform's account
            record, or ``{'success': False, 'error': message}``.
        """
        p = Platform.parse(platform)
        if p is None:
            return {'success': False, 'error': INVALID_PLATFORM}
        adapter = self.adapters[p]
        try:
            credential = None
            if adapter.search_requires_credential:
                if user_id is None:
                    raise ComparisonError(NOT_AUTHENTICATED)
                credential = adapter.get_credential(db, user_id)
            account = adapter.search(credential, adapter.resolve_identifier(identifier))
            if account is None:
                raise ComparisonError(adapter.search_not_found_message(identifier))
            return {'success': True, 'user': adapter.search_record(account)}
        except ComparisonError as e:
            return {'success': False, 'error': e.message}
        except Exception as e:
            logger.warning("%s user search failed: %s", adapter.label, e)
            return {'success': False,
                    'error': error_message(e, f'Failed to search {adapter.label} user')}

    def get_current_user_comparison_data(self, db, user_id: Optional[int],
                                         platform: str) -> ProfileResult:
        """Build the caller's own profile for *platform* from the database.

        Live extras (PS Plus flag, Xbox account tier) are fetched best
        effort and omitted when unavailable.
        """
        p = Platform.parse(platform)
        if p is None:
            return ProfileResult(False, error=INVALID_PLATFORM)
        if user_id is None:
            return ProfileResult(False, error=NOT_AUTHENTICATED)
        try:
            user = self._db.get_user(db, user_id)
            if not user:
                return ProfileResult(False, error='Profile not found')
            return ProfileResult(True, profile=self.adapters[p].fetch_self_library(db, user))
        except Exception as e:
            logger.exception("Loading own %s data failed", p.label)
            return ProfileResult(False, error=error_message(e, 'Failed to get user data'))

    def compare_profile(self, db, user_id: Optional[int], platform: str,
                        identifier: str) -> ComparisonResult:
        """Compare the caller's library with the player *identifier* names.

        Args:
            db:         SQLAlchemy session.
            user_id:    Caller's user ID, ``None`` when not logged in.
            platform:   ``'steam'``, ``'psn'`` or ``'xbox'``.
            identifier: Steam ID64 / profile URL, PSN online ID or Xbox
                        gamertag.

        Returns:
            :class:`ComparisonResult`; ``common_games`` sorted by the
            caller's progress, highest first.
        """
        p = Platform.parse(platform)
        if p is None:
            return ComparisonResult.failure(INVALID_PLATFORM)
        adapter = self.adapters[p]
        try:
            return self._compare(db, user_id, adapter, identifier)
        except ComparisonError as e:
            return ComparisonResult.failure(e.message)
        except Exception as e:
            logger.exception("%s comparison failed", adapter.label)
            return ComparisonResult.failure(
                error_message(e, f'Failed to compare {adapter.label} profiles'))

    def get_achievement_comparison(self, db, user_id: Optional[int], platform: str,
                                   game_title: str,
                                   friend_identifier: str) -> AchievementComparisonResult:
        """Per-achievement comparison for one game; see
        :class:`AchievementCompareService`."""
        return self.achievements.compare(db, user_id, platform, game_title, friend_identifier)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _same_account(theirs: Optional[str], mine: Optional[str]) -> bool:
        return bool(theirs and mine) and theirs.lower() == mine.lower()

    def _compare(self, db, user_id, adapter: PlatformAdapter, identifier: str) -> ComparisonResult:
        if user_id is None:
            raise ComparisonError(NOT_AUTHENTICATED)
        credential = adapter.get_credential(db, user_id)
        mine = adapter.own_identifier(self._db.get_user(db, user_id))

        resolved = adapter.resolve_identifier(identifier)
        if adapter.self_check_before_search and self._same_account(resolved, mine):
            raise ComparisonError(adapter.self_comparison_message())

        account = adapter.search(credential, resolved)
        if account is None:
            raise ComparisonError(adapter.not_found_message(identifier))
        if self._same_account(adapter.account_identifier(account), mine):
            raise ComparisonError(adapter.self_comparison_message())

        own = self.get_current_user_comparison_data(db, user_id, adapter.platform)
        if not own.success:
            raise ComparisonError(own.error or f'Failed to get your {adapter.label} data')

        friend = adapter.fetch_friend_library(credential, account)
        logger.info("Compared %s libraries: %d vs %d games", adapter.label,
                    own.profile.stats.total_games, friend.stats.total_games)
        return ComparisonResult.ok(own.profile, friend,
                                   compute_common_games(own.profile.games, friend.games))

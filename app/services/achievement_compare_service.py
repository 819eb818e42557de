"""Side-by-side achievement comparison for one game."""
import logging
import re
import unicodedata
from typing import Any, Callable, Dict, List, Optional

from platform_clients import (
    InvalidSteamIdError,
    epoch_to_iso,
    get_steam_header_url,
    schema_achievements,
    validate_steam_id,
)
from app.helpers import error_message
from app.models import (
    AchievementComparisonResult,
    AchievementSide,
    ComparisonAchievement,
    Platform,
)
from app.services.platform_adapters import ComparisonError

logger = logging.getLogger('gametrack.compare')

TROPHY_ORDER = {'platinum': 0, 'gold': 1, 'silver': 2, 'bronze': 3}

XBOX_360_NOTICE = ('Achievement details are not available for Xbox 360 games. '
                   'Only total counts are shown.')


def normalize_game_title(title: str) -> str:
    """Lowercase, strip diacritics and punctuation, collapse whitespace.

    ``"Pokémon: Let's Go!"`` → ``"pokemon let s go"``
    """
    text = unicodedata.normalize('NFD', (title or '').lower())
    text = ''.join(c for c in text if not '\u0300' <= c <= '\u036f')
    text = re.sub(r'[^a-z0-9\s]', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def find_game_by_title(games: List[Dict[str, Any]], title: str,
                       get_title: Callable[[Dict[str, Any]], str]) -> Optional[Dict[str, Any]]:
    """Find *title* in *games*: exact normalized match first, then either
    title containing the other (subtitle variations)."""
    wanted = normalize_game_title(title)
    for game in games:
        if normalize_game_title(get_title(game)) == wanted:
            return game
    for game in games:
        candidate = normalize_game_title(get_title(game))
        if wanted in candidate or candidate in wanted:
            return game
    return None


def _gamerscore(achievement: Dict[str, Any]) -> Optional[int]:
    for reward in achievement.get('rewards') or []:
        if reward.get('type') == 'Gamerscore' and reward.get('value'):
            return int(reward['value'])
    return None


def _icon(achievement: Dict[str, Any]) -> Optional[str]:
    for asset in achievement.get('mediaAssets') or []:
        if asset.get('type') == 'Icon':
            return asset.get('url')
    return None


class AchievementCompareService:
    """Compares the caller's and a friend's achievements in one game.

    Both libraries are fetched live so the game's platform identifier
    (trophy set, title ID, app ID) can be found from either side.
    """

    def __init__(self, db_module, adapters) -> None:
        """
        Args:
            db_module: The imported ``database`` module.
            adapters:  ``{Platform: PlatformAdapter}`` whose ``client`` and
                credential lookup are reused here.
        """
        self._db = db_module
        self._adapters = adapters
        self._handlers = {
            Platform.PSN: self._compare_psn,
            Platform.XBOX: self._compare_xbox,
            Platform.STEAM: self._compare_steam,
        }

    def compare(self, db, user_id: Optional[int], platform: str, game_title: str,
                friend_identifier: str) -> AchievementComparisonResult:
        """Compare achievements in *game_title* with *friend_identifier*.

        Returns:
            :class:`AchievementComparisonResult`; never raises.
        """
        p = Platform.parse(platform)
        if p is None:
            return AchievementComparisonResult.failure('Invalid platform')
        if user_id is None:
            return AchievementComparisonResult.failure('Not authenticated', p.value)
        user = self._db.get_user(db, user_id)
        if not user:
            return AchievementComparisonResult.failure('Profile not found', p.value)
        try:
            return self._handlers[p](db, user, game_title, friend_identifier)
        except ComparisonError as e:
            return AchievementComparisonResult.failure(e.message, p.value)
        except Exception as e:
            logger.exception("Achievement comparison failed for %s", game_title)
            return AchievementComparisonResult.failure(
                error_message(e, 'Failed to compare achievements'), p.value)

    @staticmethod
    def _result(platform: Platform, title: str, cover_url: Optional[str], user_side,
                friend_side, achievements: List[ComparisonAchievement],
                error: Optional[str] = None) -> AchievementComparisonResult:
        total = len(achievements)

        def side(identity, earned_attr):
            earned = sum(1 for a in achievements if getattr(a, earned_attr))
            return AchievementSide(identity[0], identity[1], earned, total)

        return AchievementComparisonResult(
            True,
            platform=platform.value,
            title=title,
            cover_url=cover_url,
            user=side(user_side, 'user_unlocked'),
            friend=side(friend_side, 'friend_unlocked'),
            achievements=achievements,
            error=error,
        )

    @staticmethod
    def _not_found(game_title: str) -> ComparisonError:
        return ComparisonError(f'Game "{game_title}" not found in either library')

    # ------------------------------------------------------------------
    # PSN
    # ------------------------------------------------------------------

    def _compare_psn(self, db, user, game_title, friend_online_id):
        adapter = self._adapters[Platform.PSN]
        psn = adapter.client
        token = adapter.get_credential(db, user.id)
        if not user.psn_account_id:
            raise ComparisonError('PSN account ID not found')

        friend = psn.search_user(token, friend_online_id)
        if not friend:
            raise ComparisonError(f'Friend "{friend_online_id}" not found')

        get_title = lambda g: g.get('trophyTitleName', '')
        user_game = find_game_by_title(
            psn.get_trophy_titles(token, user.psn_account_id), game_title, get_title)
        friend_game = find_game_by_title(
            psn.get_trophy_titles(token, friend['accountId']), game_title, get_title)
        if not user_game and not friend_game:
            raise self._not_found(game_title)

        info = user_game or friend_game
        comm_id = info['npCommunicationId']
        service = info.get('npServiceName') or 'trophy2'
        user_trophies = (psn.get_title_trophies(token, comm_id, service, user.psn_account_id)
                         if user_game else [])
        friend_trophies = (psn.get_title_trophies(token, comm_id, service, friend['accountId'])
                           if friend_game else [])

        mine = {t['trophyId']: t for t in user_trophies}
        theirs = {t['trophyId']: t for t in friend_trophies}
        achievements = []
        for trophy in user_trophies or friend_trophies:
            own = mine.get(trophy['trophyId']) or {}
            other = theirs.get(trophy['trophyId']) or {}
            rate = trophy.get('trophyEarnedRate')
            achievements.append(ComparisonAchievement(
                id=str(trophy['trophyId']),
                name=trophy.get('trophyName') or 'Hidden Trophy',
                description=trophy.get('trophyDetail') or '',
                icon_url=trophy.get('trophyIconUrl') or None,
                user_unlocked=bool(own.get('earned')),
                user_unlock_date=own.get('earnedDateTime'),
                friend_unlocked=bool(other.get('earned')),
                friend_unlock_date=other.get('earnedDateTime'),
                rarity_percentage=float(rate) if rate else None,
                trophy_type=trophy.get('trophyType'),
                is_hidden=trophy.get('trophyHidden'),
            ))
        achievements.sort(key=lambda a: (TROPHY_ORDER.get(a.trophy_type or 'bronze', 3),
                                         a.name.lower()))

        return self._result(
            Platform.PSN, info.get('trophyTitleName', game_title),
            info.get('trophyTitleIconUrl') or None,
            (user.psn_online_id or 'You', user.psn_avatar_url or None),
            (friend.get('onlineId', ''), friend.get('avatarUrl')),
            achievements,
        )

    # ------------------------------------------------------------------
    # Xbox
    # ------------------------------------------------------------------

    def _compare_xbox(self, db, user, game_title, friend_gamertag):
        adapter = self._adapters[Platform.XBOX]
        xbox = adapter.client
        api_key = adapter.get_credential(db, user.id)
        if not user.xbox_xuid:
            raise ComparisonError('Xbox XUID not found')

        friend = xbox.search_by_gamertag(friend_gamertag, api_key)
        if not friend:
            raise ComparisonError(f'Friend "{friend_gamertag}" not found')

        get_title = lambda g: g.get('name', '')
        user_game = find_game_by_title(
            xbox.get_title_history(user.xbox_xuid, api_key), game_title, get_title)
        friend_game = find_game_by_title(
            xbox.get_title_history(friend['xuid'], api_key), game_title, get_title)
        if not user_game and not friend_game:
            raise self._not_found(game_title)

        info = user_game or friend_game
        title_id = info['titleId']
        user_side = (user.xbox_gamertag or 'You', user.xbox_avatar_url or None)
        friend_side = (friend.get('gamertag', ''), friend.get('gamerPicture') or None)

        user_achievements = (xbox.get_game_achievements(user.xbox_xuid, title_id, api_key)
                             if user_game else [])
        friend_achievements = (xbox.get_game_achievements(friend['xuid'], title_id, api_key)
                               if friend_game else [])

        if not user_achievements and not friend_achievements:
            user_progress = (user_game or {}).get('achievement') or {}
            friend_progress = (friend_game or {}).get('achievement') or {}
            total = (user_progress.get('totalAchievements')
                     or friend_progress.get('totalAchievements') or 0)
            if not total:
                raise ComparisonError('No achievement data available for this game')
            # Xbox 360: title history has counts but no per-achievement detail
            return AchievementComparisonResult(
                True,
                platform=Platform.XBOX.value,
                title=info.get('name', game_title),
                cover_url=info.get('displayImage') or None,
                user=AchievementSide(*user_side,
                                     user_progress.get('currentAchievements') or 0, total),
                friend=AchievementSide(*friend_side,
                                       friend_progress.get('currentAchievements') or 0, total),
                achievements=[],
                error=XBOX_360_NOTICE,
            )

        mine = {a.get('id'): a for a in user_achievements}
        theirs = {a.get('id'): a for a in friend_achievements}
        achievements = []
        for entry in user_achievements or friend_achievements:
            own = mine.get(entry.get('id')) or {}
            other = theirs.get(entry.get('id')) or {}
            user_unlocked = own.get('progressState') == 'Achieved'
            friend_unlocked = other.get('progressState') == 'Achieved'
            achievements.append(ComparisonAchievement(
                id=str(entry.get('id')),
                name=entry.get('name', ''),
                description=entry.get('description') or '',
                icon_url=_icon(entry),
                user_unlocked=user_unlocked,
                user_unlock_date=((own.get('progression') or {}).get('timeUnlocked')
                                  if user_unlocked else None),
                friend_unlocked=friend_unlocked,
                friend_unlock_date=((other.get('progression') or {}).get('timeUnlocked')
                                    if friend_unlocked else None),
                rarity_percentage=(entry.get('rarity') or {}).get('currentPercentage'),
                gamerscore=_gamerscore(entry),
                is_hidden=entry.get('isSecret'),
            ))
        achievements.sort(key=lambda a: a.gamerscore or 0, reverse=True)

        return self._result(Platform.XBOX, info.get('name', game_title),
                            info.get('displayImage') or None,
                            user_side, friend_side, achievements)

    # ------------------------------------------------------------------
    # Steam
    # ------------------------------------------------------------------

    def _compare_steam(self, db, user, game_title, friend_steam_id):
        adapter = self._adapters[Platform.STEAM]
        steam = adapter.client
        if not user.steam_id:
            raise ComparisonError(adapter.not_connected_message())
        try:
            friend_id = validate_steam_id(friend_steam_id)
        except InvalidSteamIdError as e:
            raise ComparisonError('Invalid friend Steam ID') from e

        friend = steam.get_player_summary(friend_id)
        if not friend:
            raise ComparisonError('Friend not found on Steam')

        get_title = lambda g: g.get('name', '')
        user_game = find_game_by_title(steam.get_owned_games(user.steam_id), game_title, get_title)
        friend_game = find_game_by_title(steam.get_owned_games(friend_id), game_title, get_title)
        if not user_game and not friend_game:
            raise self._not_found(game_title)

        info = user_game or friend_game
        app_id = info['appid']
        schema = schema_achievements(steam.get_game_schema(app_id))
        if not schema:
            raise ComparisonError('This game has no achievements')

        mine = {a.get('apiname'): a for a in
                (steam.get_player_achievements(user.steam_id, app_id) if user_game else [])}
        theirs = {a.get('apiname'): a for a in
                  (steam.get_player_achievements(friend_id, app_id) if friend_game else [])}

        achievements = []
        for index, entry in enumerate(schema):
            own = mine.get(entry.get('name')) or {}
            other = theirs.get(entry.get('name')) or {}
            achievements.append(ComparisonAchievement(
                id=entry.get('name', ''),
                name=entry.get('displayName') or entry.get('name', ''),
                description=entry.get('description') or '',
                icon_url=entry.get('icon'),
                icon_gray_url=entry.get('icongray'),
                user_unlocked=own.get('achieved') == 1,
                user_unlock_date=epoch_to_iso(own.get('unlocktime')),
                friend_unlocked=other.get('achieved') == 1,
                friend_unlock_date=epoch_to_iso(other.get('unlocktime')),
                # Estimate: schema order roughly follows unlock rarity
                rarity_percentage=100 - (index / len(schema)) * 80,
                is_hidden=entry.get('hidden') == 1,
            ))

        return self._result(
            Platform.STEAM, info.get('name', game_title), get_steam_header_url(app_id),
            (user.steam_persona_name or 'You', user.steam_avatar_url or None),
            (friend.get('personaname', ''), friend.get('avatarfull') or None),
            achievements,
        )

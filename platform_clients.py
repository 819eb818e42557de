"""
platform_clients.py
===================
Platform API clients used by the profile comparison:

* **Steam**: Steam Web API (``api.steampowered.com``), keyed by a server-side
  Web API key
* **PlayStation Network**: PSN mobile API (``m.np.playstation.com``), called
  with the *caller's* OAuth access token
* **Xbox**: OpenXBL (``xbl.io/api/v2``), called with the caller's API key

All clients share the same plumbing (:class:`_PlatformClient`): a
``requests.Session``, a per-request timeout, a sliding-window request limiter
and translation of HTTP failures into the typed errors below.

Error mapping
-------------
* HTTP 401 → ``*AuthError``
* HTTP 403 → ``*PrivacyError``
* HTTP 429 or local limiter exhausted → ``*RateLimitError``
* any other HTTP error → the platform base error with ``status_code`` set
* network failures and timeouts → the platform base error, code
  ``NETWORK_ERROR``
"""
from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from gametrack import is_valid_steam_id


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class PlatformAPIError(Exception):
    """Base error for every platform API failure."""

    def __init__(self, message: str, code: str = 'API_ERROR',
                 status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class SteamAPIError(PlatformAPIError):
    pass


class SteamAuthError(SteamAPIError):
    def __init__(self, message: str = 'Steam Web API key was rejected') -> None:
        super().__init__(message, 'AUTH_ERROR', 401)


class SteamPrivacyError(SteamAPIError):
    def __init__(self, message: str = 'Steam profile or game details are private') -> None:
        super().__init__(message, 'PRIVACY_ERROR', 403)


class SteamRateLimitError(SteamAPIError):
    def __init__(self, message: str = 'Steam API rate limit exceeded') -> None:
        super().__init__(message, 'RATE_LIMIT', 429)


class InvalidSteamIdError(SteamAPIError):
    def __init__(self, message: str = 'Invalid Steam ID format') -> None:
        super().__init__(message, 'INVALID_STEAM_ID', 400)


class PsnAPIError(PlatformAPIError):
    pass


class PsnAuthError(PsnAPIError):
    def __init__(self, message: str = 'PSN authentication failed. Please re-link your PSN account.') -> None:
        super().__init__(message, 'AUTH_ERROR', 401)


class PsnPrivacyError(PsnAPIError):
    def __init__(self, message: str = 'This PSN profile is private') -> None:
        super().__init__(message, 'PRIVACY_ERROR', 403)


class PsnRateLimitError(PsnAPIError):
    def __init__(self, message: str = 'PSN API rate limit exceeded') -> None:
        super().__init__(message, 'RATE_LIMIT', 429)


class XboxAPIError(PlatformAPIError):
    pass


class XboxAuthError(XboxAPIError):
    def __init__(self, message: str = 'Invalid or expired Xbox API key') -> None:
        super().__init__(message, 'AUTH_ERROR', 401)


class XboxPrivacyError(XboxAPIError):
    def __init__(self, message: str = 'This Xbox profile is private') -> None:
        super().__init__(message, 'PRIVACY_ERROR', 403)


class XboxRateLimitError(XboxAPIError):
    def __init__(self, message: str = 'Xbox API rate limit exceeded') -> None:
        super().__init__(message, 'RATE_LIMIT', 429)


class InvalidGamertagError(XboxAPIError):
    def __init__(self, message: str = 'Invalid gamertag. Please enter a valid Xbox gamertag.') -> None:
        super().__init__(message, 'INVALID_GAMERTAG', 400)


class InvalidXuidError(XboxAPIError):
    def __init__(self, message: str = 'Invalid XUID format. Please provide a valid 16-digit Xbox User ID.') -> None:
        super().__init__(message, 'INVALID_XUID', 400)


# ---------------------------------------------------------------------------
# Request limiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """Sliding-window request counter.

    Allows at most *max_requests* calls in any *window* seconds. Safe to share
    between the worker threads of a batch.
    """

    def __init__(self, max_requests: int, window: float, clock=time.monotonic) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._requests: deque = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window:
            self._requests.popleft()

    def acquire(self) -> float:
        """Record a request if one is allowed.

        Returns:
            ``0`` when the request was recorded, otherwise the number of
            seconds until a slot frees up (nothing is recorded).
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._requests) < self.max_requests:
                self._requests.append(now)
                return 0
            return self.window - (now - self._requests[0])


# ---------------------------------------------------------------------------
# Shared client plumbing
# ---------------------------------------------------------------------------

class _PlatformClient:
    """HTTP plumbing shared by the three platform clients."""

    display_name = 'Platform'
    _error = PlatformAPIError
    _auth_error = PlatformAPIError
    _privacy_error = PlatformAPIError
    _rate_limit_error = PlatformAPIError

    # (max requests, window seconds)
    RATE_LIMIT = (30, 60)

    def __init__(self, timeout: float = 10) -> None:
        self.timeout = timeout
        self.session = requests.Session()
        self.rate_limiter = RateLimiter(*self.RATE_LIMIT)
        self._log = logging.getLogger(f'gametrack.{self.get_platform_name()}')

    def get_platform_name(self) -> str:
        raise NotImplementedError

    def _request_json(self, method: str, url: str, **kwargs) -> Any:
        """Perform one API call and return the decoded JSON body.

        Raises:
            PlatformAPIError: (platform subclass) on any failure.
        """
        wait = self.rate_limiter.acquire()
        if wait:
            raise self._rate_limit_error(
                f"Rate limit exceeded. Please wait {math.ceil(wait)} seconds.")
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise self._error(
                f"Failed to fetch from {self.display_name} API: {exc}", 'NETWORK_ERROR'
            ) from exc

        status = resp.status_code
        if status == 401:
            raise self._auth_error()
        if status == 403:
            raise self._privacy_error()
        if status == 429:
            raise self._rate_limit_error()
        if status >= 400:
            raise self._error(
                f"{self.display_name} API request failed: HTTP {status}", 'API_ERROR', status)
        try:
            return resp.json()
        except ValueError as exc:
            raise self._error(
                f"{self.display_name} API returned invalid JSON", 'INVALID_RESPONSE', status
            ) from exc


# ---------------------------------------------------------------------------
# Steam
# ---------------------------------------------------------------------------

_PROFILE_URL_RE = re.compile(r'steamcommunity\.com/profiles/(\d+)')
_CUSTOM_URL_RE = re.compile(r'steamcommunity\.com/id/([^/]+)')


def validate_steam_id(value: str) -> str:
    """Normalize a Steam ID64 or profile URL to a bare Steam ID64.

    Accepts ``7656119XXXXXXXXXX`` and
    ``https://steamcommunity.com/profiles/7656119XXXXXXXXXX``.

    Raises:
        InvalidSteamIdError: For custom ``/id/<name>`` URLs (they need a
            vanity lookup) and anything else that is not a Steam ID64.
    """
    trimmed = (value or '').strip()
    if is_valid_steam_id(trimmed):
        return trimmed

    m = _PROFILE_URL_RE.search(trimmed)
    if m and is_valid_steam_id(m.group(1)):
        return m.group(1)

    if _CUSTOM_URL_RE.search(trimmed):
        raise InvalidSteamIdError(
            'Custom Steam URLs are not supported. Please use your Steam ID64 '
            'or profile URL with ID.')

    raise InvalidSteamIdError(
        'Invalid Steam ID format. Please provide a Steam ID64 or profile URL.')


def get_steam_header_url(app_id) -> str:
    """Steam CDN header image (460x215) for *app_id*."""
    return f"https://cdn.cloudflare.steamstatic.com/steam/apps/{app_id}/header.jpg"


class SteamAPIClient(_PlatformClient):
    """Client for interacting with Steam Web API"""

    BASE_URL = "https://api.steampowered.com"
    RATE_LIMIT = (200, 300)

    display_name = 'Steam'
    _error = SteamAPIError
    _auth_error = SteamAuthError
    _privacy_error = SteamPrivacyError
    _rate_limit_error = SteamRateLimitError

    def __init__(self, api_key: str, timeout: float = 10) -> None:
        super().__init__(timeout)
        self.api_key = api_key

    def get_platform_name(self) -> str:
        return "steam"

    def _require_key(self) -> None:
        if not self.api_key:
            raise SteamAPIError('Steam API key not configured', 'NO_API_KEY', 500)

    def get_player_summary(self, steam_id: str) -> Optional[Dict[str, Any]]:
        """Return the public profile for *steam_id*, or ``None`` if unknown.

        The dict carries ``steamid``, ``personaname``, ``avatarfull`` and
        ``profileurl``.
        """
        valid_id = validate_steam_id(steam_id)
        self._require_key()
        data = self._request_json(
            'GET', f"{self.BASE_URL}/ISteamUser/GetPlayerSummaries/v2/",
            params={'key': self.api_key, 'steamids': valid_id},
        )
        players = (data.get('response') or {}).get('players') or []
        return players[0] if players else None

    def get_owned_games(self, steam_id: str) -> List[Dict[str, Any]]:
        """Get list of games owned by a Steam user

        Each entry carries ``appid``, ``name``, ``playtime_forever`` (minutes)
        and, where the game has public stats, ``has_community_visible_stats``.

        Raises:
            SteamPrivacyError: When the response has no game list, which is
                how Steam reports a private library.
        """
        valid_id = validate_steam_id(steam_id)
        self._require_key()
        data = self._request_json(
            'GET', f"{self.BASE_URL}/IPlayerService/GetOwnedGames/v1/",
            params={
                'key': self.api_key,
                'steamid': valid_id,
                'include_appinfo': 1,
                'include_played_free_games': 1,
            },
        )
        games = (data.get('response') or {}).get('games')
        if games is None:
            raise SteamPrivacyError(
                'Unable to fetch games. Please ensure your Steam profile and '
                'game details are set to public.')
        return games

    def get_player_achievements(self, steam_id: str, app_id) -> List[Dict[str, Any]]:
        """Return the raw achievement list (``apiname``, ``achieved``,
        ``unlocktime``) for *steam_id* in *app_id*.

        Returns an empty list when the game has no achievements, the profile
        is private, or the request fails.
        """
        if not self.api_key:
            return []
        try:
            app_id_int = int(app_id)
            data = self._request_json(
                'GET', f"{self.BASE_URL}/ISteamUserStats/GetPlayerAchievements/v1/",
                params={'key': self.api_key, 'steamid': validate_steam_id(steam_id),
                        'appid': app_id_int},
            )
        except (ValueError, TypeError, SteamAPIError) as e:
            self._log.debug("Achievement fetch failed for app %s: %s", app_id, e)
            return []
        stats = data.get('playerstats') or {}
        if not stats.get('success'):
            return []
        return stats.get('achievements') or []

    def get_game_schema(self, app_id) -> Optional[Dict[str, Any]]:
        """Return the ``GetSchemaForGame`` body for *app_id*, or ``None``."""
        if not self.api_key:
            return None
        try:
            return self._request_json(
                'GET', f"{self.BASE_URL}/ISteamUserStats/GetSchemaForGame/v2/",
                params={'key': self.api_key, 'appid': int(app_id)},
            )
        except (ValueError, TypeError, SteamAPIError) as e:
            self._log.debug("Schema fetch failed for app %s: %s", app_id, e)
            return None


def schema_achievements(schema: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Achievement definitions from a ``GetSchemaForGame`` body."""
    if not schema:
        return []
    game = schema.get('game') or {}
    return (game.get('availableGameStats') or {}).get('achievements') or []


# ---------------------------------------------------------------------------
# PlayStation Network
# ---------------------------------------------------------------------------

_TROPHY_TYPES = ('bronze', 'silver', 'gold', 'platinum')


def calculate_total_trophies(counts: Optional[Dict[str, int]]) -> int:
    """Sum bronze, silver, gold and platinum counts."""
    counts = counts or {}
    return sum(int(counts.get(t) or 0) for t in _TROPHY_TYPES)


def normalize_psn_platform(platform: str) -> str:
    """Map a trophy-title platform string (``"PS4,PS5"``) to one console label."""
    normalized = (platform or '').upper()
    if 'PS5' in normalized:
        return 'PS5'
    if 'PS4' in normalized:
        return 'PS4'
    if 'PS3' in normalized:
        return 'PS3'
    if 'VITA' in normalized:
        return 'PS Vita'
    return 'PlayStation'


def _largest_avatar(avatars: Optional[List[Dict[str, str]]]) -> Optional[str]:
    size_order = {'xl': 4, 'l': 3, 'm': 2, 's': 1}
    if not avatars:
        return None
    best = max(avatars, key=lambda a: size_order.get(a.get('size', ''), 0))
    return best.get('url') or None


class PSNClient(_PlatformClient):
    """PlayStation Network client.

    Unlike the Steam client this one carries no credentials of its own:
    every call takes the access token of the GameTrack user on whose behalf
    it runs (see :class:`app.services.TokenService`). Looking up *another*
    player therefore always needs the caller to have linked PSN.
    """

    _SSO_URL      = "https://ca.account.sony.com/api/authz/v3/oauth/token"
    _SEARCH_URL   = "https://m.np.playstation.com/api/search/v1/universalSearch"
    _PROFILE_URL  = "https://m.np.playstation.com/api/userProfile/v1/internal/users/{account_id}/profiles"
    _TROPHY_BASE  = "https://m.np.playstation.com/api/trophy/v1"
    _PLAYED_URL   = "https://m.np.playstation.com/api/gamelist/v2/users/{account_id}/titles"
    # Public client credentials shipped in the PlayStation mobile app; they
    # are required for the refresh-token grant and grant no extra access.
    _CLIENT_ID     = "09515159-7237-4370-9b40-3806e67c0891"
    _CLIENT_SECRET = "ucIBBpU6QUVYETxW"
    _SCOPE         = "psn:mobile.v2.core psn:clientapp"

    PLAYED_PAGE_LIMIT = 200

    display_name = 'PSN'
    _error = PsnAPIError
    _auth_error = PsnAuthError
    _privacy_error = PsnPrivacyError
    _rate_limit_error = PsnRateLimitError

    def get_platform_name(self) -> str:
        return "psn"

    @staticmethod
    def _auth(access_token: str) -> Dict[str, str]:
        return {'Authorization': f'Bearer {access_token}'}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Returns:
            Dict with ``access_token``, ``refresh_token`` and ``expires_in``.

        Raises:
            PsnAuthError: When Sony rejects the refresh token.
        """
        data = {
            'grant_type':    'refresh_token',
            'refresh_token': refresh_token,
            'token_format':  'jwt',
            'scope':         self._SCOPE,
        }
        try:
            body = self._request_json(
                'POST', self._SSO_URL, data=data,
                auth=(self._CLIENT_ID, self._CLIENT_SECRET),
            )
        except PsnAPIError as exc:
            raise PsnAuthError(
                'Failed to refresh PSN tokens. Please re-link your PSN account.') from exc
        return {
            'access_token':  body.get('access_token', ''),
            'refresh_token': body.get('refresh_token', refresh_token),
            'expires_in':    int(body.get('expires_in', 3600)),
        }

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def search_user(self, access_token: str, online_id: str) -> Optional[Dict[str, Any]]:
        """Find the account whose online ID equals *online_id* (any case).

        Returns:
            Dict with ``accountId``, ``onlineId``, ``avatarUrl``,
            ``isPsPlus`` and ``isOfficiallyVerified``, or ``None``.
        """
        wanted = (online_id or '').strip()
        if not wanted:
            return None
        body = self._request_json(
            'POST', self._SEARCH_URL,
            json={'searchTerm': wanted,
                  'domainRequests': [{'domain': 'SocialAllAccounts'}]},
            headers=self._auth(access_token),
        )
        for domain in body.get('domainResponses') or []:
            for result in domain.get('results') or []:
                meta = result.get('socialMetadata') or {}
                if (meta.get('onlineId') or '').lower() == wanted.lower():
                    return {
                        'accountId':            meta.get('accountId', ''),
                        'onlineId':             meta.get('onlineId', ''),
                        'avatarUrl':            meta.get('avatarUrl') or None,
                        'isPsPlus':             bool(meta.get('isPsPlus', False)),
                        'isOfficiallyVerified': bool(meta.get('isOfficiallyVerified', False)),
                    }
        return None

    def get_profile(self, access_token: str, account_id: str) -> Dict[str, Any]:
        """Return ``onlineId``, ``avatarUrl`` (largest size) and ``isPlus``."""
        body = self._request_json(
            'GET', self._PROFILE_URL.format(account_id=account_id),
            headers=self._auth(access_token),
        )
        return {
            'onlineId':  body.get('onlineId', ''),
            'avatarUrl': _largest_avatar(body.get('avatars')),
            'isPlus':    bool(body.get('isPlus', False)),
        }

    # ------------------------------------------------------------------
    # Trophies and games
    # ------------------------------------------------------------------

    def get_trophy_summary(self, access_token: str, account_id: str = 'me') -> Dict[str, Any]:
        """Trophy level, tier, progress and earned counts for *account_id*."""
        body = self._request_json(
            'GET', f"{self._TROPHY_BASE}/users/{account_id}/trophySummary",
            headers=self._auth(access_token),
        )
        return {
            'accountId':      body.get('accountId', account_id),
            'trophyLevel':    body.get('trophyLevel'),
            'progress':       body.get('progress', 0),
            'tier':           body.get('tier'),
            'earnedTrophies': body.get('earnedTrophies') or {},
        }

    def get_trophy_titles(self, access_token: str, account_id: str = 'me',
                          limit: int = 800) -> List[Dict[str, Any]]:
        """Trophy titles (one per game) for *account_id*.

        Each entry has ``npCommunicationId``, ``npServiceName``,
        ``trophyTitleName``, ``trophyTitleIconUrl``, ``trophyTitlePlatform``,
        ``progress``, ``definedTrophies`` and ``earnedTrophies``.

        Raises:
            PsnPrivacyError: When the trophy list is not visible.
        """
        body = self._request_json(
            'GET', f"{self._TROPHY_BASE}/users/{account_id}/trophyTitles",
            params={'limit': limit},
            headers=self._auth(access_token),
        )
        return body.get('trophyTitles') or []

    def get_played_games(self, access_token: str, account_id: str = 'me') -> List[Dict[str, Any]]:
        """Played games with ``name`` and ISO-8601 ``playDuration``.

        Pages through the list ``PLAYED_PAGE_LIMIT`` entries at a time.

        Raises:
            PsnAuthError, PsnPrivacyError: Propagated; any other failure
                yields an empty list since playtime is optional.
        """
        titles: List[Dict[str, Any]] = []
        offset = 0
        while True:
            try:
                body = self._request_json(
                    'GET', self._PLAYED_URL.format(account_id=account_id),
                    params={
                        'categories': 'ps4_game,ps5_native_game',
                        'limit':      self.PLAYED_PAGE_LIMIT,
                        'offset':     offset,
                    },
                    headers=self._auth(access_token),
                )
            except (PsnAuthError, PsnPrivacyError):
                raise
            except PsnAPIError as exc:
                self._log.warning("PSN played games fetch failed: %s", exc)
                return []

            page = body.get('titles') or []
            titles.extend(page)
            total = body.get('totalItemCount', len(titles))
            if len(page) < self.PLAYED_PAGE_LIMIT or len(titles) >= total:
                break
            offset += self.PLAYED_PAGE_LIMIT
        return titles

    def get_title_trophies(self, access_token: str, np_communication_id: str,
                           np_service_name: str = 'trophy',
                           account_id: str = 'me') -> List[Dict[str, Any]]:
        """Trophy definitions for one title merged with *account_id*'s
        earned state.

        Returns an empty list when either request fails.
        """
        params = {'npServiceName': np_service_name}
        try:
            definitions = self._request_json(
                'GET',
                f"{self._TROPHY_BASE}/npCommunicationIds/{np_communication_id}"
                f"/trophyGroups/all/trophies",
                params=params, headers=self._auth(access_token),
            )
            earned = self._request_json(
                'GET',
                f"{self._TROPHY_BASE}/users/{account_id}/npCommunicationIds/"
                f"{np_communication_id}/trophyGroups/all/trophies",
                params=params, headers=self._auth(access_token),
            )
        except PsnAPIError as exc:
            self._log.warning("Failed to fetch trophies for %s: %s", np_communication_id, exc)
            return []

        earned_map = {t.get('trophyId'): t for t in earned.get('trophies') or []}
        merged = []
        for trophy in definitions.get('trophies') or []:
            mine = earned_map.get(trophy.get('trophyId')) or {}
            merged.append({
                'trophyId':         trophy.get('trophyId'),
                'trophyHidden':     bool(trophy.get('trophyHidden', False)),
                'trophyType':       trophy.get('trophyType', 'bronze'),
                'trophyName':       trophy.get('trophyName') or 'Hidden Trophy',
                'trophyDetail':     trophy.get('trophyDetail') or '',
                'trophyIconUrl':    trophy.get('trophyIconUrl') or '',
                'earned':           bool(mine.get('earned', False)),
                'earnedDateTime':   mine.get('earnedDateTime'),
                'trophyEarnedRate': mine.get('trophyEarnedRate'),
            })
        return merged


# ---------------------------------------------------------------------------
# Xbox (OpenXBL)
# ---------------------------------------------------------------------------

def validate_gamertag(gamertag: str) -> str:
    """Trim *gamertag*; modern tags plus a ``#1234`` suffix stay under 21 chars."""
    trimmed = (gamertag or '').strip()
    if not trimmed or len(trimmed) > 20:
        raise InvalidGamertagError()
    return trimmed


def validate_xuid(xuid: str) -> str:
    trimmed = str(xuid or '').strip()
    if not re.match(r'^\d{15,17}$', trimmed):
        raise InvalidXuidError()
    return trimmed


def normalize_xbox_platform(devices: List[str]) -> str:
    """Normalize a title's device list to ``"Xbox (<console>)"``.

    The oldest console wins so backward-compatible Xbox 360 titles are
    labelled as such.
    """
    devices = devices or []
    if 'Xbox360' in devices:
        return 'Xbox (Xbox 360)'
    if 'XboxOne' in devices:
        return 'Xbox (Xbox One)'
    if 'XboxSeriesXS' in devices or 'Scarlett' in devices:
        return 'Xbox (Xbox Series X|S)'
    if 'PC' in devices:
        return 'PC'
    return 'Xbox'


_PAREN_RE = re.compile(r'\(([^)]+)\)')


def xbox_console_label(devices: List[str]) -> str:
    """Human console name, e.g. ``"Xbox One"`` out of ``"Xbox (Xbox One)"``."""
    normalized = normalize_xbox_platform(devices)
    m = _PAREN_RE.search(normalized)
    return m.group(1) if m else normalized


def is_pc_only_title(title: Dict[str, Any]) -> bool:
    """True when a title-history entry was only ever played on Windows."""
    return list(title.get('devices') or []) == ['Win32']


def _settings_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    settings = {s.get('id'): s.get('value') for s in user.get('settings') or []}
    return {
        'xuid':         user.get('id', ''),
        'gamertag':     settings.get('Gamertag') or settings.get('GameDisplayName') or '',
        'gamerscore':   int(settings.get('Gamerscore') or 0),
        'gamerPicture': settings.get('GameDisplayPicRaw') or settings.get('PublicGamerpic') or '',
        'accountTier':  settings.get('AccountTier') or '',
    }


class XboxAPIClient(_PlatformClient):
    """OpenXBL client. Every call takes the caller's OpenXBL API key."""

    BASE_URL = "https://xbl.io/api/v2"

    display_name = 'Xbox'
    _error = XboxAPIError
    _auth_error = XboxAuthError
    _privacy_error = XboxPrivacyError
    _rate_limit_error = XboxRateLimitError

    def get_platform_name(self) -> str:
        return "xbox"

    def _get(self, endpoint: str, api_key: str) -> Any:
        if not api_key:
            raise XboxAPIError('Xbox API key not configured', 'NO_API_KEY', 500)
        return self._request_json(
            'GET', f"{self.BASE_URL}{endpoint}",
            headers={
                'x-authorization': api_key,
                'Accept': 'application/json',
                'Accept-Language': 'en-US',
            },
        )

    def get_my_profile(self, api_key: str) -> Dict[str, Any]:
        """Profile of the key's owner: ``xuid``, ``gamertag``, ``gamerscore``,
        ``gamerPicture``, ``accountTier``."""
        users = self._get('/account', api_key).get('profileUsers') or []
        if not users:
            raise XboxAPIError('No profile data returned', 'NO_DATA', 404)
        return _settings_profile(users[0])

    def search_by_gamertag(self, gamertag: str, api_key: str) -> Optional[Dict[str, Any]]:
        """Look up a player by gamertag; ``None`` when nobody matches."""
        valid = validate_gamertag(gamertag)
        try:
            body = self._get(f"/search/{quote(valid, safe='')}", api_key)
        except XboxAPIError as exc:
            if exc.status_code == 404:
                return None
            raise
        people = body.get('people') or []
        if not people:
            return None
        person = people[0]
        return {
            'xuid':         person.get('xuid', ''),
            'gamertag':     person.get('modernGamertag') or person.get('gamertag') or '',
            'gamerscore':   int(person.get('gamerScore') or 0),
            'gamerPicture': person.get('displayPicRaw') or '',
            'accountTier':  (person.get('detail') or {}).get('accountTier') or '',
        }

    def get_title_history(self, xuid: str, api_key: str) -> List[Dict[str, Any]]:
        """Title history for *xuid*: ``titleId``, ``name``, ``displayImage``,
        ``devices`` and ``achievement`` progress."""
        body = self._get(f"/player/titleHistory/{validate_xuid(xuid)}", api_key)
        return body.get('titles') or []

    def get_game_achievements(self, xuid: str, title_id: str, api_key: str) -> List[Dict[str, Any]]:
        """Per-player achievements for one title, falling back to the title's
        achievement list (no unlock state) when the player endpoint is empty.

        Xbox 360 titles have neither; the result is then an empty list.
        """
        valid = validate_xuid(xuid)
        try:
            player = self._get(f"/achievements/player/{valid}/{title_id}", api_key)
            achievements = player.get('achievements') or []
        except XboxAPIError as exc:
            self._log.debug("Player achievements for %s failed: %s", title_id, exc)
            achievements = []
        if achievements:
            return achievements
        try:
            return self._get(f"/achievements/title/{title_id}", api_key).get('achievements') or []
        except XboxAPIError as exc:
            self._log.debug("Title achievements for %s failed: %s", title_id, exc)
            return []


def epoch_to_iso(seconds) -> Optional[str]:
    """Unix seconds → ``2024-01-31T12:00:00.000Z`` (``None`` for 0/empty)."""
    if not seconds:
        return None
    dt = datetime.fromtimestamp(int(seconds), tz=timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.000Z')

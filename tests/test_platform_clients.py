#!/usr/bin/env python3
"""
Tests for platform_clients.py:
  - Steam ID / gamertag validation and platform label normalization
  - RateLimiter sliding window
  - HTTP status → typed error mapping shared by all clients
  - SteamAPIClient, PSNClient and XboxAPIClient response parsing

Run with:
    python -m pytest tests/test_platform_clients.py
"""
import os
import sys
import unittest
from unittest.mock import MagicMock, patch

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from platform_clients import (
    InvalidGamertagError,
    InvalidSteamIdError,
    InvalidXuidError,
    PSNClient,
    PsnAPIError,
    PsnAuthError,
    PsnPrivacyError,
    PsnRateLimitError,
    RateLimiter,
    SteamAPIClient,
    SteamAPIError,
    SteamPrivacyError,
    SteamRateLimitError,
    XboxAPIClient,
    XboxAPIError,
    XboxAuthError,
    calculate_total_trophies,
    epoch_to_iso,
    get_steam_header_url,
    is_pc_only_title,
    normalize_psn_platform,
    normalize_xbox_platform,
    schema_achievements,
    validate_gamertag,
    validate_steam_id,
    validate_xuid,
    xbox_console_label,
)

STEAM_ID = '76561198012345678'


# ===========================================================================
# Helpers
# ===========================================================================

def _ok_resp(body):
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = body
    return resp


def _status_resp(status):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = {}
    return resp


# ===========================================================================
# Validation and normalization
# ===========================================================================

class TestValidateSteamId(unittest.TestCase):

    def test_plain_id64(self):
        self.assertEqual(validate_steam_id(STEAM_ID), STEAM_ID)

    def test_whitespace_is_trimmed(self):
        self.assertEqual(validate_steam_id(f'  {STEAM_ID} '), STEAM_ID)

    def test_profile_url(self):
        url = f'https://steamcommunity.com/profiles/{STEAM_ID}/'
        self.assertEqual(validate_steam_id(url), STEAM_ID)

    def test_custom_url_rejected_with_specific_message(self):
        with self.assertRaises(InvalidSteamIdError) as ctx:
            validate_steam_id('https://steamcommunity.com/id/gabelogannewell')
        self.assertEqual(
            ctx.exception.message,
            'Custom Steam URLs are not supported. Please use your Steam ID64 '
            'or profile URL with ID.')

    def test_garbage_rejected(self):
        with self.assertRaises(InvalidSteamIdError) as ctx:
            validate_steam_id('not-a-steam-id')
        self.assertEqual(
            ctx.exception.message,
            'Invalid Steam ID format. Please provide a Steam ID64 or profile URL.')
        self.assertEqual(ctx.exception.code, 'INVALID_STEAM_ID')


class TestXboxValidation(unittest.TestCase):

    def test_gamertag_trimmed(self):
        self.assertEqual(validate_gamertag('  Major Nelson '), 'Major Nelson')

    def test_gamertag_empty_or_too_long(self):
        with self.assertRaises(InvalidGamertagError):
            validate_gamertag('   ')
        with self.assertRaises(InvalidGamertagError):
            validate_gamertag('x' * 21)

    def test_xuid(self):
        self.assertEqual(validate_xuid('2533274792186133'), '2533274792186133')
        with self.assertRaises(InvalidXuidError):
            validate_xuid('12ab')


class TestNormalization(unittest.TestCase):

    def test_xbox_oldest_console_wins(self):
        self.assertEqual(normalize_xbox_platform(['XboxOne', 'Xbox360']), 'Xbox (Xbox 360)')
        self.assertEqual(normalize_xbox_platform(['XboxSeries', 'XboxOne']), 'Xbox (Xbox One)')
        self.assertEqual(normalize_xbox_platform(['XboxSeriesXS']), 'Xbox (Xbox Series X|S)')
        self.assertEqual(normalize_xbox_platform(['Scarlett']), 'Xbox (Xbox Series X|S)')
        self.assertEqual(normalize_xbox_platform(['PC']), 'PC')
        self.assertEqual(normalize_xbox_platform([]), 'Xbox')

    def test_xbox_console_label_extracts_parenthesised_name(self):
        self.assertEqual(xbox_console_label(['XboxOne']), 'Xbox One')
        self.assertEqual(xbox_console_label(['XboxSeriesXS']), 'Xbox Series X|S')
        self.assertEqual(xbox_console_label(['PC']), 'PC')
        self.assertEqual(xbox_console_label(None), 'Xbox')

    def test_pc_only_title(self):
        self.assertTrue(is_pc_only_title({'devices': ['Win32']}))
        self.assertFalse(is_pc_only_title({'devices': ['Win32', 'XboxOne']}))
        self.assertFalse(is_pc_only_title({'devices': []}))
        self.assertFalse(is_pc_only_title({}))

    def test_psn_platform(self):
        self.assertEqual(normalize_psn_platform('PS4,PS5'), 'PS5')
        self.assertEqual(normalize_psn_platform('PS4'), 'PS4')
        self.assertEqual(normalize_psn_platform('PSVITA'), 'PS Vita')
        self.assertEqual(normalize_psn_platform(''), 'PlayStation')

    def test_total_trophies(self):
        counts = {'bronze': 30, 'silver': 8, 'gold': 3, 'platinum': 1}
        self.assertEqual(calculate_total_trophies(counts), 42)
        self.assertEqual(calculate_total_trophies(None), 0)

    def test_steam_header_url(self):
        self.assertEqual(
            get_steam_header_url(1145360),
            'https://cdn.cloudflare.steamstatic.com/steam/apps/1145360/header.jpg')

    def test_schema_achievements(self):
        schema = {'game': {'availableGameStats': {'achievements': [{'name': 'A'}]}}}
        self.assertEqual(schema_achievements(schema), [{'name': 'A'}])
        self.assertEqual(schema_achievements({'game': {}}), [])
        self.assertEqual(schema_achievements(None), [])

    def test_epoch_to_iso(self):
        self.assertEqual(epoch_to_iso(1700000000), '2023-11-14T22:13:20.000Z')
        self.assertIsNone(epoch_to_iso(0))


# ===========================================================================
# RateLimiter
# ===========================================================================

class TestRateLimiter(unittest.TestCase):

    def test_allows_up_to_max_then_reports_wait(self):
        now = [100.0]
        limiter = RateLimiter(2, 60, clock=lambda: now[0])
        self.assertEqual(limiter.acquire(), 0)
        self.assertEqual(limiter.acquire(), 0)
        now[0] = 110.0
        self.assertAlmostEqual(limiter.acquire(), 50.0)

    def test_window_slides(self):
        now = [0.0]
        limiter = RateLimiter(1, 10, clock=lambda: now[0])
        self.assertEqual(limiter.acquire(), 0)
        now[0] = 10.0
        self.assertEqual(limiter.acquire(), 0)


# ===========================================================================
# Shared error mapping
# ===========================================================================

class TestErrorMapping(unittest.TestCase):

    def setUp(self):
        self.client = PSNClient(timeout=7)

    def _call(self):
        return self.client.get_trophy_summary('tok', 'acct')

    def test_401_is_auth_error(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(401)):
            with self.assertRaises(PsnAuthError):
                self._call()

    def test_403_is_privacy_error(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(403)):
            with self.assertRaises(PsnPrivacyError):
                self._call()

    def test_429_is_rate_limit_error(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(429)):
            with self.assertRaises(PsnRateLimitError):
                self._call()

    def test_other_status_keeps_status_code(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(502)):
            with self.assertRaises(PsnAPIError) as ctx:
                self._call()
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(ctx.exception.code, 'API_ERROR')

    def test_timeout_is_network_error(self):
        with patch.object(self.client.session, 'request',
                          side_effect=requests.Timeout('read timed out')):
            with self.assertRaises(PsnAPIError) as ctx:
                self._call()
        self.assertEqual(ctx.exception.code, 'NETWORK_ERROR')

    def test_invalid_json(self):
        resp = _status_resp(200)
        resp.json.side_effect = ValueError('no json')
        with patch.object(self.client.session, 'request', return_value=resp):
            with self.assertRaises(PsnAPIError) as ctx:
                self._call()
        self.assertEqual(ctx.exception.code, 'INVALID_RESPONSE')

    def test_timeout_passed_to_every_request(self):
        with patch.object(self.client.session, 'request',
                          return_value=_ok_resp({'trophyLevel': 5})) as req:
            self._call()
        self.assertEqual(req.call_args.kwargs['timeout'], 7)

    def test_exhausted_limiter_skips_http(self):
        self.client.rate_limiter = MagicMock()
        self.client.rate_limiter.acquire.return_value = 12.3
        with patch.object(self.client.session, 'request') as req:
            with self.assertRaises(PsnRateLimitError) as ctx:
                self._call()
        req.assert_not_called()
        self.assertIn('13 seconds', ctx.exception.message)

    def test_steam_uses_its_own_error_types(self):
        client = SteamAPIClient('KEY')
        with patch.object(client.session, 'request', return_value=_status_resp(429)):
            with self.assertRaises(SteamRateLimitError):
                client.get_owned_games(STEAM_ID)
        with patch.object(client.session, 'request', return_value=_status_resp(403)):
            with self.assertRaises(SteamPrivacyError):
                client.get_owned_games(STEAM_ID)

    def test_xbox_uses_its_own_error_types(self):
        client = XboxAPIClient()
        with patch.object(client.session, 'request', return_value=_status_resp(401)):
            with self.assertRaises(XboxAuthError):
                client.get_my_profile('key')


# ===========================================================================
# SteamAPIClient
# ===========================================================================

class TestSteamAPIClient(unittest.TestCase):

    def setUp(self):
        self.client = SteamAPIClient('FAKE_KEY')

    def test_player_summary(self):
        body = {'response': {'players': [{'steamid': STEAM_ID, 'personaname': 'Gabe'}]}}
        with patch.object(self.client.session, 'request', return_value=_ok_resp(body)) as req:
            player = self.client.get_player_summary(STEAM_ID)
        self.assertEqual(player['personaname'], 'Gabe')
        self.assertEqual(req.call_args.kwargs['params']['steamids'], STEAM_ID)

    def test_player_summary_unknown_returns_none(self):
        with patch.object(self.client.session, 'request',
                          return_value=_ok_resp({'response': {'players': []}})):
            self.assertIsNone(self.client.get_player_summary(STEAM_ID))

    def test_player_summary_requires_api_key(self):
        client = SteamAPIClient('')
        with self.assertRaises(SteamAPIError) as ctx:
            client.get_player_summary(STEAM_ID)
        self.assertEqual(ctx.exception.code, 'NO_API_KEY')

    def test_owned_games(self):
        body = {'response': {'game_count': 1, 'games': [{'appid': 620, 'name': 'Portal 2'}]}}
        with patch.object(self.client.session, 'request', return_value=_ok_resp(body)):
            games = self.client.get_owned_games(STEAM_ID)
        self.assertEqual(games, [{'appid': 620, 'name': 'Portal 2'}])

    def test_owned_games_without_list_is_private(self):
        with patch.object(self.client.session, 'request', return_value=_ok_resp({'response': {}})):
            with self.assertRaises(SteamPrivacyError):
                self.client.get_owned_games(STEAM_ID)

    def test_player_achievements(self):
        body = {'playerstats': {'success': True, 'achievements': [
            {'apiname': 'A', 'achieved': 1, 'unlocktime': 1700000000},
            {'apiname': 'B', 'achieved': 0, 'unlocktime': 0},
        ]}}
        with patch.object(self.client.session, 'request', return_value=_ok_resp(body)):
            achievements = self.client.get_player_achievements(STEAM_ID, 620)
        self.assertEqual(len(achievements), 2)

    def test_player_achievements_swallow_failures(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(403)):
            self.assertEqual(self.client.get_player_achievements(STEAM_ID, 620), [])
        with patch.object(self.client.session, 'request',
                          return_value=_ok_resp({'playerstats': {'success': False}})):
            self.assertEqual(self.client.get_player_achievements(STEAM_ID, 620), [])
        self.assertEqual(self.client.get_player_achievements(STEAM_ID, 'not_an_int'), [])

    def test_game_schema_failure_returns_none(self):
        with patch.object(self.client.session, 'request',
                          side_effect=requests.ConnectionError('down')):
            self.assertIsNone(self.client.get_game_schema(620))


# ===========================================================================
# PSNClient
# ===========================================================================

def _search_body(*online_ids):
    return {'domainResponses': [{'domain': 'SocialAllAccounts', 'results': [
        {'socialMetadata': {'accountId': f'id-{oid}', 'onlineId': oid,
                            'avatarUrl': f'https://img/{oid}.png',
                            'isPsPlus': True, 'isOfficiallyVerified': False}}
        for oid in online_ids
    ]}]}


class TestPSNClient(unittest.TestCase):

    def setUp(self):
        self.client = PSNClient()

    def test_search_matches_online_id_case_insensitively(self):
        with patch.object(self.client.session, 'request',
                          return_value=_ok_resp(_search_body('Kratos_Fan', 'kratos'))) as req:
            found = self.client.search_user('tok', 'KRATOS')
        self.assertEqual(found, {
            'accountId': 'id-kratos', 'onlineId': 'kratos',
            'avatarUrl': 'https://img/kratos.png', 'isPsPlus': True,
            'isOfficiallyVerified': False,
        })
        kwargs = req.call_args.kwargs
        self.assertEqual(kwargs['json']['searchTerm'], 'KRATOS')
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer tok')

    def test_search_without_exact_match_returns_none(self):
        with patch.object(self.client.session, 'request',
                          return_value=_ok_resp(_search_body('ghost_user_4040'))):
            self.assertIsNone(self.client.search_user('tok', 'ghost_user_404'))

    def test_search_blank_input_skips_http(self):
        with patch.object(self.client.session, 'request') as req:
            self.assertIsNone(self.client.search_user('tok', '  '))
        req.assert_not_called()

    def test_profile_picks_largest_avatar(self):
        body = {'onlineId': 'kratos', 'isPlus': True, 'avatars': [
            {'size': 's', 'url': 'small'}, {'size': 'xl', 'url': 'huge'}, {'size': 'm', 'url': 'mid'},
        ]}
        with patch.object(self.client.session, 'request', return_value=_ok_resp(body)):
            profile = self.client.get_profile('tok', 'acct')
        self.assertEqual(profile, {'onlineId': 'kratos', 'avatarUrl': 'huge', 'isPlus': True})

    def test_played_games_paginates(self):
        page1 = {'titles': [{'name': f'G{i}'} for i in range(200)], 'totalItemCount': 250}
        page2 = {'titles': [{'name': f'H{i}'} for i in range(50)], 'totalItemCount': 250}
        with patch.object(self.client.session, 'request',
                          side_effect=[_ok_resp(page1), _ok_resp(page2)]) as req:
            titles = self.client.get_played_games('tok', 'acct')
        self.assertEqual(len(titles), 250)
        self.assertEqual(req.call_count, 2)
        self.assertEqual(req.call_args_list[1].kwargs['params']['offset'], 200)

    def test_played_games_generic_failure_is_empty(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(500)):
            self.assertEqual(self.client.get_played_games('tok', 'acct'), [])

    def test_played_games_privacy_propagates(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(403)):
            with self.assertRaises(PsnPrivacyError):
                self.client.get_played_games('tok', 'acct')

    def test_refresh_access_token(self):
        body = {'access_token': 'new', 'refresh_token': 'r2', 'expires_in': 3599}
        with patch.object(self.client.session, 'request', return_value=_ok_resp(body)) as req:
            tokens = self.client.refresh_access_token('r1')
        self.assertEqual(tokens, {'access_token': 'new', 'refresh_token': 'r2', 'expires_in': 3599})
        self.assertEqual(req.call_args.kwargs['data']['refresh_token'], 'r1')

    def test_refresh_failure_is_auth_error(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(400)):
            with self.assertRaises(PsnAuthError):
                self.client.refresh_access_token('r1')

    def test_title_trophies_merge_earned_state(self):
        definitions = {'trophies': [
            {'trophyId': 0, 'trophyType': 'platinum', 'trophyName': 'All', 'trophyHidden': False},
            {'trophyId': 1, 'trophyType': 'bronze', 'trophyName': '', 'trophyHidden': True},
        ]}
        earned = {'trophies': [
            {'trophyId': 0, 'earned': False, 'trophyEarnedRate': '2.1'},
            {'trophyId': 1, 'earned': True, 'earnedDateTime': '2024-01-01T00:00:00Z'},
        ]}
        with patch.object(self.client.session, 'request',
                          side_effect=[_ok_resp(definitions), _ok_resp(earned)]):
            trophies = self.client.get_title_trophies('tok', 'NPWR1', 'trophy2', 'acct')
        self.assertEqual(trophies[0]['trophyEarnedRate'], '2.1')
        self.assertFalse(trophies[0]['earned'])
        self.assertEqual(trophies[1]['trophyName'], 'Hidden Trophy')
        self.assertTrue(trophies[1]['earned'])

    def test_title_trophies_failure_is_empty(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(404)):
            self.assertEqual(self.client.get_title_trophies('tok', 'NPWR1'), [])


# ===========================================================================
# XboxAPIClient
# ===========================================================================

class TestXboxAPIClient(unittest.TestCase):

    def setUp(self):
        self.client = XboxAPIClient()

    def test_search_parses_first_person(self):
        body = {'people': [{'xuid': '2533274792186133', 'gamertag': 'old',
                            'modernGamertag': 'Major Nelson', 'gamerScore': '12345',
                            'displayPicRaw': 'pic', 'detail': {'accountTier': 'Gold'}}]}
        with patch.object(self.client.session, 'request', return_value=_ok_resp(body)) as req:
            person = self.client.search_by_gamertag('Major Nelson', 'KEY')
        self.assertEqual(person, {'xuid': '2533274792186133', 'gamertag': 'Major Nelson',
                                  'gamerscore': 12345, 'gamerPicture': 'pic',
                                  'accountTier': 'Gold'})
        self.assertEqual(req.call_args.kwargs['headers']['x-authorization'], 'KEY')
        self.assertTrue(req.call_args.args[1].endswith('/search/Major%20Nelson'))

    def test_search_404_returns_none(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(404)):
            self.assertIsNone(self.client.search_by_gamertag('nobody', 'KEY'))

    def test_search_no_people_returns_none(self):
        with patch.object(self.client.session, 'request', return_value=_ok_resp({'people': []})):
            self.assertIsNone(self.client.search_by_gamertag('nobody', 'KEY'))

    def test_my_profile_reads_settings(self):
        body = {'profileUsers': [{'id': '2533274792186133', 'settings': [
            {'id': 'Gamertag', 'value': 'Me'},
            {'id': 'Gamerscore', 'value': '900'},
            {'id': 'GameDisplayPicRaw', 'value': 'pic'},
            {'id': 'AccountTier', 'value': 'Gold'},
        ]}]}
        with patch.object(self.client.session, 'request', return_value=_ok_resp(body)):
            profile = self.client.get_my_profile('KEY')
        self.assertEqual(profile['gamertag'], 'Me')
        self.assertEqual(profile['gamerscore'], 900)
        self.assertEqual(profile['accountTier'], 'Gold')

    def test_missing_api_key(self):
        with self.assertRaises(XboxAPIError) as ctx:
            self.client.get_title_history('2533274792186133', '')
        self.assertEqual(ctx.exception.code, 'NO_API_KEY')

    def test_game_achievements_fall_back_to_title_list(self):
        with patch.object(self.client.session, 'request', side_effect=[
            _ok_resp({'achievements': []}),
            _ok_resp({'achievements': [{'id': '1', 'name': 'First'}]}),
        ]) as req:
            achievements = self.client.get_game_achievements('2533274792186133', '123', 'KEY')
        self.assertEqual(achievements, [{'id': '1', 'name': 'First'}])
        self.assertIn('/achievements/title/123', req.call_args.args[1])

    def test_game_achievements_all_failures_empty(self):
        with patch.object(self.client.session, 'request', return_value=_status_resp(500)):
            self.assertEqual(
                self.client.get_game_achievements('2533274792186133', '123', 'KEY'), [])


if __name__ == '__main__':
    unittest.main()

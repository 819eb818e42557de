#!/usr/bin/env python3
"""
GameTrack - Cross-platform game library comparison
Compare your synced Steam, PlayStation Network and Xbox library with a friend's.
"""

import json
import logging
import math
import os
import re
import sys
import argparse
from typing import Any, Dict, Optional

from colorama import init, Fore, Style
from dotenv import load_dotenv

# Initialize colorama for cross-platform colored terminal output
init(autoreset=True)

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(level: str = 'WARNING') -> logging.Logger:
    """Configure the root GameTrack logger.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to WARNING so normal use is quiet.

    Returns:
        Configured logger instance.
    """
    numeric = getattr(logging, str(level).upper(), logging.WARNING)
    logger = logging.getLogger('gametrack')
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(numeric)
    return logger


# Module-level logger used throughout gametrack.py
logger = setup_logging()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CONFIG: Dict[str, Any] = {
    'steam_api_key': '',
    'database_url': 'sqlite:///gametrack.db',
    'request_timeout': 10,
    'log_level': 'WARNING',
    'secret_key': '',
    # Steam achievement lookups for a friend's library
    'steam_achievement_limit': 20,
    'steam_batch_size': 5,
    'steam_batch_delay': 0.2,
    'batch_timeout': 60,
}

_PLACEHOLDER_VALUES = {'DEMO_MODE', 'DEMO_KEY', 'YOUR_STEAM_API_KEY_HERE'}


def is_placeholder_value(value: str) -> bool:
    """Check if a value is a placeholder/demo sentinel that should not be used for real API calls."""
    if not value or not isinstance(value, str):
        return True
    return value.startswith('YOUR_') or value in _PLACEHOLDER_VALUES


def load_config(config_path: str = 'config.json') -> Dict[str, Any]:
    """Load configuration from JSON file with environment variable support

    The config file is optional; missing keys fall back to ``DEFAULT_CONFIG``.
    Environment variables (including those from a ``.env`` file) take
    precedence over config file values:

    - STEAM_API_KEY / STEAM_WEB_API_KEY overrides steam_api_key
    - DATABASE_URL overrides database_url
    - REQUEST_TIMEOUT overrides request_timeout
    - LOG_LEVEL overrides log_level
    - SECRET_KEY overrides secret_key

    Raises:
        ValueError: If the config file exists but is not valid JSON.
    """
    load_dotenv()
    config = dict(DEFAULT_CONFIG)

    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config.update(json.load(f))
        except json.JSONDecodeError as e:
            raise ValueError(f"Error parsing config file '{config_path}': {e}") from e
    else:
        logger.debug("Config file %s not found, using defaults", config_path)

    steam_key = os.getenv('STEAM_API_KEY') or os.getenv('STEAM_WEB_API_KEY')
    if steam_key:
        config['steam_api_key'] = steam_key
    if os.getenv('DATABASE_URL'):
        config['database_url'] = os.getenv('DATABASE_URL')
    if os.getenv('REQUEST_TIMEOUT'):
        try:
            config['request_timeout'] = float(os.getenv('REQUEST_TIMEOUT'))
        except ValueError:
            logger.warning("Ignoring non-numeric REQUEST_TIMEOUT=%r", os.getenv('REQUEST_TIMEOUT'))
    if os.getenv('LOG_LEVEL'):
        config['log_level'] = os.getenv('LOG_LEVEL')
    if os.getenv('SECRET_KEY'):
        config['secret_key'] = os.getenv('SECRET_KEY')

    if is_placeholder_value(config.get('steam_api_key', '')):
        config['steam_api_key'] = ''

    return config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round *value* to *ndigits* decimals with halves rounded up.

    Unlike the built-in :func:`round` this never uses banker's rounding, so
    ``round_half_up(0.5) == 1`` and ``round_half_up(2.25, 1) == 2.3``.
    """
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def percentage(part: float, whole: float) -> int:
    """Return ``part / whole`` as a whole percentage, or 0 when *whole* is 0."""
    if not whole:
        return 0
    return int(round_half_up(part / whole * 100))


def minutes_to_hours(minutes: float) -> float:
    """Convert playtime from minutes to hours

    Args:
        minutes: Playtime in minutes

    Returns:
        Playtime in hours, rounded to 2 decimal places
    """
    if not minutes:
        return 0
    return round_half_up(minutes / 60, 2)


_ISO_DURATION_RE = re.compile(r'PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?')


def parse_iso_duration(duration: Optional[str]) -> int:
    """Parse an ISO-8601 play duration such as ``PT228H56M33S`` into minutes.

    Seconds are rounded to the nearest minute. Empty or unparseable values
    return 0.
    """
    if not duration:
        return 0
    m = _ISO_DURATION_RE.search(duration)
    if not m:
        return 0
    hours = int(m.group(1) or 0)
    minutes = int(m.group(2) or 0)
    seconds = int(m.group(3) or 0)
    return hours * 60 + minutes + int(round_half_up(seconds / 60))


_STEAM_ID64_RE = re.compile(r'^7656119\d{10}$')


def is_valid_steam_id(steam_id: str) -> bool:
    """Validate Steam ID format (64-bit SteamID)

    Args:
        steam_id: Steam ID to validate

    Returns:
        True if valid 64-bit Steam ID format, False otherwise
    """
    if not steam_id or not isinstance(steam_id, str):
        return False
    # Steam 64-bit IDs are 17-digit numbers starting with 7656119
    return bool(_STEAM_ID64_RE.match(steam_id))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _print_failure(result: Dict[str, Any]) -> None:
    print(f"{Fore.RED}Error: {result.get('error', 'Unknown error')}")


def _print_comparison(result: Dict[str, Any]) -> None:
    user = result['user']
    friend = result['friend']
    print(f"{Fore.CYAN}{Style.BRIGHT}{user['username']} vs {friend['username']}")
    for label, profile in (('You', user), ('Friend', friend)):
        stats = profile['stats']
        print(f"  {label:<7} games={stats['totalGames']:<5} "
              f"achievements={stats['totalAchievements']:<6} "
              f"playtime={stats['totalPlaytime']}h "
              f"completion={stats['completionRate']}%")
    common = result['commonGames']
    print(f"{Fore.GREEN}{len(common)} games in common")
    for game in common:
        console = f" [{game['console']}]" if game.get('console') else ''
        print(f"  {game['title']}{console}: "
              f"{game['userProgress']}% / {game['friendProgress']}%  "
              f"({game['userPlaytime']}h / {game['friendPlaytime']}h)")


def _print_achievements(result: Dict[str, Any]) -> None:
    print(f"{Fore.CYAN}{Style.BRIGHT}{result['game']['title']}")
    for side in ('user', 'friend'):
        entry = result[side]
        print(f"  {entry['username']}: {entry['earnedCount']}/{entry['totalCount']} "
              f"({entry['progress']}%)")
    if result.get('error'):
        print(f"{Fore.YELLOW}{result['error']}")
    for ach in result['achievements']:
        you = f"{Fore.GREEN}x{Style.RESET_ALL}" if ach['userUnlocked'] else ' '
        them = f"{Fore.GREEN}x{Style.RESET_ALL}" if ach['friendUnlocked'] else ' '
        print(f"  [{you}] [{them}] {ach['name']}")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='GameTrack - compare your game library with a friend on Steam, PSN or Xbox')
    parser.add_argument('--config', default='config.json', help='Path to config file')
    parser.add_argument('--log-level', default=None, help='Log level (DEBUG, INFO, WARNING, ...)')
    parser.add_argument('--user-id', type=int, default=None, help='Local user ID to act as')
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('init-db', help='Create database tables')

    p_search = sub.add_parser('search', help='Look up a player on a platform')
    p_search.add_argument('platform', choices=['steam', 'psn', 'xbox'])
    p_search.add_argument('identifier')

    p_compare = sub.add_parser('compare', help='Compare libraries with another player')
    p_compare.add_argument('platform', choices=['steam', 'psn', 'xbox'])
    p_compare.add_argument('identifier')

    p_ach = sub.add_parser('achievements', help='Compare achievements for one game')
    p_ach.add_argument('platform', choices=['steam', 'psn', 'xbox'])
    p_ach.add_argument('identifier')
    p_ach.add_argument('title')

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"{Fore.RED}{e}")
        return 1
    setup_logging(args.log_level or config.get('log_level', 'WARNING'))

    import database
    from app.services import ComparisonService

    database.configure(config['database_url'])
    if args.command == 'init-db':
        ok = database.init_db()
        print(f"{Fore.GREEN}Database ready" if ok else f"{Fore.RED}Database initialization failed")
        return 0 if ok else 1

    service = ComparisonService.from_config(config)
    db = next(database.get_db())
    try:
        if args.command == 'search':
            result = service.search_user(db, args.user_id, args.platform, args.identifier)
            if not result['success']:
                _print_failure(result)
                return 1
            for key, value in result['user'].items():
                print(f"  {key}: {value}")
        elif args.command == 'compare':
            result = service.compare_profile(db, args.user_id, args.platform,
                                             args.identifier).to_dict()
            if not result['success']:
                _print_failure(result)
                return 1
            _print_comparison(result)
        else:
            result = service.get_achievement_comparison(
                db, args.user_id, args.platform, args.title, args.identifier).to_dict()
            if not result['success']:
                _print_failure(result)
                return 1
            _print_achievements(result)
    finally:
        db.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())

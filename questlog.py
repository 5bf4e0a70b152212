#!/usr/bin/env python3
"""
QuestLog - Game Backlog Tracker
Track the games you own or want, what state each one is in, and the order
you plan to play them, from the command line or over HTTP.
"""

import argparse
import json
import logging
import os
import sys
from typing import Dict, List, Optional

from colorama import init, Fore, Style

from app.errors import QuestLogError
from app.services import CollectionService
from app.services.play_time import format_hours, format_time
from app.services.state_machine import STATUSES
from catalog_clients import RawgCatalogClient
from database import Database, DEFAULT_DATABASE_URL

# Initialize colorama for cross-platform colored terminal output
init(autoreset=True)

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(level: str = 'WARNING') -> logging.Logger:
    """Configure the root QuestLog logger.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to WARNING so normal use is quiet.

    Returns:
        Configured logger instance.
    """
    numeric = getattr(logging, str(level).upper(), logging.WARNING)
    logger = logging.getLogger('questlog')
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(numeric)
    return logger


logger = setup_logging()

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CONFIG: Dict = {
    'database_url': DEFAULT_DATABASE_URL,
    'rawg_api_key': '',
    'api_timeout_seconds': 10,
    'log_level': 'WARNING',
}

# config key -> environment variable that overrides it
ENV_OVERRIDES = {
    'database_url': 'DATABASE_URL',
    'rawg_api_key': 'RAWG_API_KEY',
    'log_level': 'QUESTLOG_LOG_LEVEL',
}


def is_placeholder_value(value) -> bool:
    """Check if a value is a template placeholder that should not be used for real API calls."""
    if not value or not isinstance(value, str):
        return True
    return value.startswith('YOUR_')


def load_config(config_path: str = 'config.json') -> Dict:
    """Load ``config.json`` merged over the defaults, then apply env overrides.

    A missing or unreadable file is not an error: the defaults are used.
    """
    config = dict(DEFAULT_CONFIG)
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                config.update(loaded)
            else:
                logger.warning("Ignoring %s: top level is not an object", config_path)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s, using defaults: %s", config_path, e)

    for key, env_name in ENV_OVERRIDES.items():
        if os.getenv(env_name):
            config[key] = os.getenv(env_name)
    try:
        config['api_timeout_seconds'] = int(config.get('api_timeout_seconds') or 10)
    except (TypeError, ValueError):
        config['api_timeout_seconds'] = 10
    return config


# ---------------------------------------------------------------------------
# Composition root
# ---------------------------------------------------------------------------

class QuestLog:
    """Builds the persistence handle, catalog clients and service façade once.

    Args:
        config_path: Path to ``config.json``.
        config:      Ready-made config dict (skips file and env loading).
    """

    def __init__(self, config_path: str = 'config.json', config: Optional[Dict] = None):
        self.config = config if config is not None else load_config(config_path)
        setup_logging(self.config.get('log_level', 'WARNING'))

        self.database = Database(self.config.get('database_url') or DEFAULT_DATABASE_URL)
        self.database.init_db()

        self.catalog = None
        api_key = self.config.get('rawg_api_key')
        if not is_placeholder_value(api_key):
            self.catalog = RawgCatalogClient(api_key, timeout=self.config.get('api_timeout_seconds', 10))
            logger.info("RAWG catalog enabled")
        else:
            logger.info("No RAWG API key configured; search is local-only")

        self.service = CollectionService(self.database, catalog_client=self.catalog)

    def close(self) -> None:
        self.database.dispose()


# ---------------------------------------------------------------------------
# CLI output
# ---------------------------------------------------------------------------

def _print_user_game(ug: Dict) -> None:
    game = ug.get('game') or {}
    tags = ', '.join(ug.get('tags') or []) or '-'
    print(f"{Fore.CYAN}{Style.BRIGHT}[{ug['id']}] {game.get('title', '?')}")
    print(f"    {Fore.YELLOW}Status: {Fore.WHITE}{ug['status']}"
          f"  {Fore.YELLOW}Progress: {Fore.WHITE}{ug['progress_percent']:.0f}%"
          f"  {Fore.YELLOW}Main story: {Fore.WHITE}{format_time(ug.get('effective_main_time'))}")
    print(f"    {Fore.YELLOW}Tags: {Fore.WHITE}{tags}")


def _print_queue(queue: Dict) -> None:
    stats = queue.get('stats') or {}
    marker = ' (default)' if queue.get('is_default') else ''
    print(f"\n{Fore.GREEN}{'=' * 60}")
    print(f"{Fore.CYAN}{Style.BRIGHT}[{queue['id']}] {queue['name']}{marker}")
    if queue.get('filter_tags'):
        print(f"{Fore.YELLOW}Filter tags: {Fore.WHITE}{', '.join(queue['filter_tags'])}")
    print(f"{Fore.YELLOW}Games: {Fore.WHITE}{stats.get('total_games', 0)}"
          f"  {Fore.YELLOW}Remaining: {Fore.WHITE}{format_hours(stats.get('remaining_time'))}"
          f" of {format_hours(stats.get('total_main_time'))}")
    print(f"{Fore.GREEN}{'=' * 60}")
    for ug in queue.get('games') or []:
        game = ug.get('game') or {}
        print(f"  {ug['queue_position']:>3}. {game.get('title', '?')} {Fore.YELLOW}({ug['status']})")


def _split_tags(raw: Optional[str]) -> List[str]:
    return [t for t in (raw or '').split(',') if t.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='questlog',
        description='QuestLog - Game Backlog Tracker',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  questlog search "hollow knight"            # Search local games, then RAWG
  questlog add 9767 --status BACKLOG         # Add a RAWG game to your collection
  questlog status 3 CURRENTLY_PLAYING        # Change a game's status
  questlog queue-create "Short RPGs" --tags rpg,short
  questlog serve --port 5000                 # Run the JSON API
        """
    )
    parser.add_argument('--config', '-c', default='config.json',
                        help='Path to config file (default: config.json)')
    parser.add_argument('--user', '-u', default=os.getenv('QUESTLOG_USER', 'local'),
                        help='User id to act as (default: $QUESTLOG_USER or "local")')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('search', help='Search for games')
    p.add_argument('query')

    p = sub.add_parser('add', help='Add a catalog game to your collection')
    p.add_argument('external_id', help='Catalog (RAWG) game id')
    p.add_argument('--queue', type=int, help='Queue id to append the game to')
    p.add_argument('--status', choices=STATUSES, help='Initial status (default: BACKLOG)')

    p = sub.add_parser('list', help='List your games')
    p.add_argument('--status', choices=STATUSES)

    p = sub.add_parser('remove', help='Remove a game from your collection')
    p.add_argument('user_game_id', type=int)

    p = sub.add_parser('status', help="Change a game's status")
    p.add_argument('user_game_id', type=int)
    p.add_argument('new_status', choices=STATUSES)

    p = sub.add_parser('progress', help="Set a game's completion percentage")
    p.add_argument('user_game_id', type=int)
    p.add_argument('percent', type=float)

    p = sub.add_parser('tag', help='Add a tag to a game')
    p.add_argument('user_game_id', type=int)
    p.add_argument('tag')

    p = sub.add_parser('untag', help='Remove a tag from a game')
    p.add_argument('user_game_id', type=int)
    p.add_argument('tag')

    p = sub.add_parser('tags', help='List tags (of one game, or all of yours)')
    p.add_argument('user_game_id', type=int, nargs='?')

    p = sub.add_parser('find', help='Find games carrying every given tag')
    p.add_argument('tags', help='Comma-separated tags')

    sub.add_parser('queues', help='List your queues')

    p = sub.add_parser('queue-create', help='Create a queue')
    p.add_argument('name')
    p.add_argument('--description', default='')
    p.add_argument('--tags', help='Comma-separated filter tags (auto-populates the queue)')

    p = sub.add_parser('queue-delete', help='Delete a queue')
    p.add_argument('queue_id', type=int)

    p = sub.add_parser('queue-add', help='Append a game to a queue')
    p.add_argument('queue_id', type=int)
    p.add_argument('user_game_id', type=int)

    p = sub.add_parser('matches', help="Show games matching a queue's filter tags")
    p.add_argument('queue_id', type=int)

    p = sub.add_parser('serve', help='Run the JSON API')
    p.add_argument('--host', default='127.0.0.1')
    p.add_argument('--port', type=int, default=5000)
    return parser


def run_command(ql: QuestLog, args) -> int:
    """Execute one parsed CLI command; returns the process exit code."""
    service = ql.service
    user = args.user
    cmd = args.command

    if cmd == 'search':
        results = service.search_games(args.query)
        if not results:
            print(f"{Fore.YELLOW}No games found.")
        for game in results:
            ident = game['id'] if game['source'] == 'local' else f"{game['api_source']}:{game['api_id']}"
            print(f"{Fore.CYAN}{game['title']} {Fore.WHITE}[{ident}] {Fore.YELLOW}{game.get('release_date') or ''}")
    elif cmd == 'add':
        game = service.add_game_from_catalog(args.external_id)
        ug = service.add_game_to_collection(user, game['id'], queue_id=args.queue, status=args.status)
        print(f"{Fore.GREEN}Added {game['title']} to your collection.")
        _print_user_game(ug)
    elif cmd == 'list':
        games = service.list_user_games(user, status=args.status)
        if not games:
            print(f"{Fore.YELLOW}Your collection is empty.")
        for ug in games:
            _print_user_game(ug)
    elif cmd == 'remove':
        service.remove_game_from_collection(user, args.user_game_id)
        print(f"{Fore.GREEN}Removed game {args.user_game_id}.")
    elif cmd == 'status':
        _print_user_game(service.transition(user, args.user_game_id, args.new_status))
    elif cmd == 'progress':
        _print_user_game(service.set_progress(user, args.user_game_id, args.percent))
    elif cmd == 'tag':
        print(f"{Fore.GREEN}Tagged with '{service.add_tag(user, args.user_game_id, args.tag)}'.")
    elif cmd == 'untag':
        print(f"{Fore.GREEN}Removed tag '{service.remove_tag(user, args.user_game_id, args.tag)}'.")
    elif cmd == 'tags':
        if args.user_game_id is None:
            tags = service.list_all_tags(user)
        else:
            tags = service.list_tags(user, args.user_game_id)
        print(', '.join(tags) if tags else f"{Fore.YELLOW}No tags.")
    elif cmd == 'find':
        for ug in service.find_user_games_by_tags(user, _split_tags(args.tags)):
            _print_user_game(ug)
    elif cmd == 'queues':
        queues = service.list_queues(user)
        if not queues:
            print(f"{Fore.YELLOW}You have no queues yet.")
        for queue in queues:
            _print_queue(queue)
    elif cmd == 'queue-create':
        _print_queue(service.create_queue(user, args.name, args.description,
                                          filter_tags=_split_tags(args.tags)))
    elif cmd == 'queue-delete':
        released = service.delete_queue(user, args.queue_id)
        print(f"{Fore.GREEN}Queue deleted; {released} game(s) released.")
    elif cmd == 'queue-add':
        _print_user_game(service.add_to_queue(user, args.queue_id, args.user_game_id))
    elif cmd == 'matches':
        matches = service.find_new_matches(user, args.queue_id)
        if not matches:
            print(f"{Fore.YELLOW}No new matches.")
        for ug in matches:
            _print_user_game(ug)
    elif cmd == 'serve':
        from questlog_api import create_app
        create_app(ql).run(host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    ql = QuestLog(config_path=args.config)
    try:
        return run_command(ql, args)
    except QuestLogError as e:
        print(f"{Fore.RED}Error: {e.message}")
        return 1
    finally:
        ql.close()


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""
Unit tests for the app/repositories and app/services layer.

Run with:
    python -m pytest tests/test_services.py
"""
import math
import os
import sys
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Database, Game, GameQueue, UserGame, UserGameTag
from app.errors import (
    DuplicateName, DuplicateTag, EmptyTag, Forbidden, NotFound, ValidationError,
)
from app.repositories import (
    GameRepository, QueueRepository, TagRepository, UserGameRepository,
)
from app.services import ProgressService, QueueService, TagService
from app.services.tag_service import normalize_tag, normalize_tag_list


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class DatabaseMixin(unittest.TestCase):
    """Fresh in-memory database and one open session per test."""

    def setUp(self):
        self.database = Database('sqlite:///:memory:')
        self.database.init_db()
        self.db = self.database.session()

    def tearDown(self):
        self.db.close()
        self.database.dispose()

    def _game(self, title, main_time=None, completion_time=None):
        game = Game(title=title, api_id=title.lower().replace(' ', '-'), api_source='RAWG',
                    main_time=main_time, completion_time=completion_time)
        self.db.add(game)
        self.db.flush()
        return game

    def _user_game(self, title, user_id='alice', status='BACKLOG', **fields):
        game = self._game(title, fields.pop('main_time', None), fields.pop('completion_time', None))
        user_game = UserGame(user_id=user_id, game_id=game.id, status=status, **fields)
        self.db.add(user_game)
        self.db.flush()
        return user_game

    def _positions(self, queue_id):
        return [(ug.id, ug.queue_position) for ug in UserGameRepository(self.db).in_queue(queue_id)]


# ===========================================================================
# Repository tests
# ===========================================================================

class TestGameRepository(DatabaseMixin):

    def test_find_by_api_id_coerces_to_string(self):
        game = GameRepository(self.db).create(title='Celeste', api_id='42', api_source='RAWG')
        self.assertEqual(GameRepository(self.db).find_by_api_id('RAWG', 42).id, game.id)
        self.assertIsNone(GameRepository(self.db).find_by_api_id('IGDB', '42'))

    def test_search_by_title_is_case_insensitive(self):
        self._game('Hollow Knight')
        self._game('Hades')
        titles = [g.title for g in GameRepository(self.db).search_by_title('knight')]
        self.assertEqual(titles, ['Hollow Knight'])

    def test_search_by_title_treats_wildcards_literally(self):
        self._game('Hollow Knight')
        self._game('Hades')
        self._game('100% Orange Juice')
        repo = GameRepository(self.db)
        self.assertEqual(repo.search_by_title('_'), [])
        self.assertEqual([g.title for g in repo.search_by_title('%')], ['100% Orange Juice'])

    def test_search_by_title_respects_limit(self):
        for i in range(5):
            self._game(f'Game {i}')
        self.assertEqual(len(GameRepository(self.db).search_by_title('game', limit=3)), 3)


class TestUserGameRepository(DatabaseMixin):

    def test_find_scopes_by_owner(self):
        ug = self._user_game('Portal 2')
        repo = UserGameRepository(self.db)
        self.assertIsNotNone(repo.find(ug.id, user_id='alice'))
        self.assertIsNone(repo.find(ug.id, user_id='bob'))

    def test_list_for_user_filters_status(self):
        self._user_game('Portal 2')
        self._user_game('Dota 2', status='WISHLIST')
        self._user_game('Hades', user_id='bob')
        repo = UserGameRepository(self.db)
        self.assertEqual(len(repo.list_for_user('alice')), 2)
        wish = repo.list_for_user('alice', status='WISHLIST')
        self.assertEqual([ug.game.title for ug in wish], ['Dota 2'])

    def test_max_position_empty_queue(self):
        queue = QueueService().create_queue(self.db, 'alice', 'Main')
        self.assertIsNone(UserGameRepository(self.db).max_position(queue.id))


# ===========================================================================
# Tag tests
# ===========================================================================

class TestTagNormalisation(unittest.TestCase):

    def test_normalize_tag(self):
        self.assertEqual(normalize_tag('  Cozy '), 'cozy')
        self.assertEqual(normalize_tag(None), '')

    def test_normalize_tag_list(self):
        self.assertEqual(normalize_tag_list(['RPG ', 'short', 'rpg', '  ']), ['rpg', 'short'])
        self.assertEqual(normalize_tag_list(None), [])

    def test_normalize_tag_list_single_string(self):
        self.assertEqual(normalize_tag_list(' RPG '), ['rpg'])


class TestTagService(DatabaseMixin):

    def setUp(self):
        super().setUp()
        self.svc = TagService()
        self.ug = self._user_game('Portal 2')

    def test_add_tag_normalises(self):
        self.assertEqual(self.svc.add_tag(self.db, self.ug.id, '  Cozy '), 'cozy')
        self.assertEqual(self.svc.list_tags(self.db, self.ug.id), ['cozy'])

    def test_duplicate_after_normalisation_rejected(self):
        self.svc.add_tag(self.db, self.ug.id, 'cozy')
        with self.assertRaises(DuplicateTag) as ctx:
            self.svc.add_tag(self.db, self.ug.id, 'COZY ')
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(self.svc.list_tags(self.db, self.ug.id), ['cozy'])

    def test_empty_tag_rejected(self):
        for raw in ('', '   ', None):
            with self.subTest(raw=raw):
                with self.assertRaises(EmptyTag):
                    self.svc.add_tag(self.db, self.ug.id, raw)
        self.assertEqual(self.svc.list_tags(self.db, self.ug.id), [])

    def test_add_tag_unknown_user_game(self):
        with self.assertRaises(NotFound):
            self.svc.add_tag(self.db, 9999, 'cozy')

    def test_add_tag_other_owner(self):
        with self.assertRaises(NotFound):
            self.svc.add_tag(self.db, self.ug.id, 'cozy', user_id='bob')

    def test_remove_tag_normalises(self):
        self.svc.add_tag(self.db, self.ug.id, 'cozy')
        self.assertEqual(self.svc.remove_tag(self.db, self.ug.id, ' COZY'), 'cozy')
        self.assertEqual(self.svc.list_tags(self.db, self.ug.id), [])

    def test_remove_missing_tag(self):
        with self.assertRaises(NotFound):
            self.svc.remove_tag(self.db, self.ug.id, 'cozy')

    def test_list_tags_sorted(self):
        for tag in ('zen', 'action', 'metroidvania'):
            self.svc.add_tag(self.db, self.ug.id, tag)
        self.assertEqual(self.svc.list_tags(self.db, self.ug.id), ['action', 'metroidvania', 'zen'])

    def test_list_all_tags_for_user_distinct(self):
        other = self._user_game('Hades')
        bobs = self._user_game('Celeste', user_id='bob')
        self.svc.add_tag(self.db, self.ug.id, 'rpg')
        self.svc.add_tag(self.db, other.id, 'rpg')
        self.svc.add_tag(self.db, other.id, 'action')
        self.svc.add_tag(self.db, bobs.id, 'platformer')
        self.assertEqual(self.svc.list_all_tags_for_user(self.db, 'alice'), ['action', 'rpg'])

    def test_find_by_tags_uses_and_semantics(self):
        both = self._user_game('Hades')
        self.svc.add_tag(self.db, self.ug.id, 'rpg')
        self.svc.add_tag(self.db, both.id, 'rpg')
        self.svc.add_tag(self.db, both.id, 'short')
        found = self.svc.find_user_games_by_tags(self.db, 'alice', ['RPG', 'short'])
        self.assertEqual([ug.id for ug in found], [both.id])

    def test_find_by_tags_ignores_other_users(self):
        bobs = self._user_game('Celeste', user_id='bob')
        self.svc.add_tag(self.db, bobs.id, 'rpg')
        self.assertEqual(self.svc.find_user_games_by_tags(self.db, 'alice', ['rpg']), [])

    def test_empty_filter_matches_nothing_without_query(self):
        db = MagicMock()
        self.assertEqual(self.svc.find_user_games_by_tags(db, 'alice', []), [])
        self.assertEqual(self.svc.find_user_games_by_tags(db, 'alice', None), [])
        db.query.assert_not_called()


# ===========================================================================
# Progress tests
# ===========================================================================

class TestProgressService(DatabaseMixin):

    def setUp(self):
        super().setUp()
        self.svc = ProgressService()
        self.ug = self._user_game('Portal 2')

    def test_in_range_value_stored(self):
        self.assertEqual(self.svc.set_progress(self.db, self.ug.id, 42.5).progress_percent, 42.5)

    def test_clamped_high_and_low(self):
        self.assertEqual(self.svc.set_progress(self.db, self.ug.id, 150).progress_percent, 100)
        self.assertEqual(self.svc.set_progress(self.db, self.ug.id, -5).progress_percent, 0)

    def test_non_numeric_rejected(self):
        for bad in ('50', None, True, math.nan):
            with self.subTest(value=bad):
                with self.assertRaises(ValidationError):
                    self.svc.set_progress(self.db, self.ug.id, bad)
        self.assertEqual(self.ug.progress_percent, 0)

    def test_full_progress_does_not_complete(self):
        ug = self.svc.set_progress(self.db, self.ug.id, 100)
        self.assertEqual(ug.status, 'BACKLOG')
        self.assertIsNone(ug.completed_at)

    def test_unknown_user_game(self):
        with self.assertRaises(NotFound):
            self.svc.set_progress(self.db, 9999, 10)

    def test_other_owner(self):
        with self.assertRaises(NotFound):
            self.svc.set_progress(self.db, self.ug.id, 10, user_id='bob')


# ===========================================================================
# Queue tests
# ===========================================================================

class TestQueueCreation(DatabaseMixin):

    def setUp(self):
        super().setUp()
        self.svc = QueueService()

    def test_first_queue_is_default(self):
        first = self.svc.create_queue(self.db, 'alice', 'Main')
        second = self.svc.create_queue(self.db, 'alice', 'Later')
        self.assertTrue(first.is_default)
        self.assertFalse(second.is_default)

    def test_default_is_per_user(self):
        self.svc.create_queue(self.db, 'alice', 'Main')
        self.assertTrue(self.svc.create_queue(self.db, 'bob', 'Main').is_default)

    def test_duplicate_name_rejected(self):
        self.svc.create_queue(self.db, 'alice', 'Main')
        with self.assertRaises(DuplicateName):
            self.svc.create_queue(self.db, 'alice', 'Main')
        self.assertEqual(QueueRepository(self.db).count_for_user('alice'), 1)

    def test_names_are_case_sensitive(self):
        self.svc.create_queue(self.db, 'alice', 'Main')
        self.svc.create_queue(self.db, 'alice', 'main')
        self.assertEqual(QueueRepository(self.db).count_for_user('alice'), 2)

    def test_empty_name_rejected(self):
        with self.assertRaises(ValidationError):
            self.svc.create_queue(self.db, 'alice', '  ')

    def test_list_queues_default_first(self):
        self.svc.create_queue(self.db, 'alice', 'Main')
        self.svc.create_queue(self.db, 'alice', 'Later')
        names = [q.name for q, _ in self.svc.list_queues(self.db, 'alice')]
        self.assertEqual(names, ['Main', 'Later'])


class TestQueueMembership(DatabaseMixin):

    def setUp(self):
        super().setUp()
        self.svc = QueueService()
        self.main = self.svc.create_queue(self.db, 'alice', 'Main')
        self.later = self.svc.create_queue(self.db, 'alice', 'Later')
        self.a = self._user_game('Portal 2')
        self.b = self._user_game('Hades')
        self.c = self._user_game('Celeste')

    def _fill_main(self):
        for ug in (self.a, self.b, self.c):
            self.svc.add_game(self.db, self.main.id, ug.id)

    def test_add_appends_at_next_position(self):
        self._fill_main()
        self.assertEqual(self._positions(self.main.id),
                         [(self.a.id, 0), (self.b.id, 1), (self.c.id, 2)])

    def test_add_is_noop_when_already_member(self):
        self._fill_main()
        self.svc.add_game(self.db, self.main.id, self.a.id)
        self.assertEqual(self.a.queue_position, 0)

    def test_move_compacts_source(self):
        self._fill_main()
        self.svc.add_game(self.db, self.later.id, self.a.id)
        self.assertEqual(self._positions(self.main.id), [(self.b.id, 0), (self.c.id, 1)])
        self.assertEqual(self._positions(self.later.id), [(self.a.id, 0)])

    def test_remove_compacts(self):
        self._fill_main()
        ug = self.svc.remove_game(self.db, self.b.id)
        self.assertIsNone(ug.queue_id)
        self.assertIsNone(ug.queue_position)
        self.assertEqual(self._positions(self.main.id), [(self.a.id, 0), (self.c.id, 1)])

    def test_add_unknown_game(self):
        with self.assertRaises(NotFound):
            self.svc.add_game(self.db, self.main.id, 9999)

    def test_add_other_users_game(self):
        bobs = self._user_game('Dota 2', user_id='bob')
        with self.assertRaises(NotFound):
            self.svc.add_game(self.db, self.main.id, bobs.id)

    def test_add_to_other_users_queue(self):
        with self.assertRaises(NotFound):
            self.svc.add_game(self.db, self.main.id, self.a.id, user_id='bob')

    def test_reorder(self):
        self._fill_main()
        members = self.svc.reorder_queue(self.db, self.main.id, [
            {'id': self.c.id, 'position': 0},
            {'id': self.a.id, 'position': 1},
            (self.b.id, 2),
        ])
        self.assertEqual([ug.id for ug in members], [self.c.id, self.a.id, self.b.id])

    def test_reorder_rejects_non_member_without_changes(self):
        self._fill_main()
        outsider = self._user_game('Dota 2')
        with self.assertRaises(NotFound):
            self.svc.reorder_queue(self.db, self.main.id, [(self.c.id, 0), (outsider.id, 1)])
        self.assertEqual(self.c.queue_position, 2)

    def test_reorder_rejects_negative_position(self):
        self._fill_main()
        with self.assertRaises(ValidationError):
            self.svc.reorder_queue(self.db, self.main.id, [(self.a.id, -1)])
        self.assertEqual(self.a.queue_position, 0)

    def test_delete_default_forbidden(self):
        with self.assertRaises(Forbidden) as ctx:
            self.svc.delete_queue(self.db, self.main.id)
        self.assertEqual(ctx.exception.message, 'Cannot delete default queue')
        self.assertIsNotNone(QueueRepository(self.db).find(self.main.id))

    def test_delete_releases_games_keeping_state(self):
        for ug in (self.a, self.b):
            self.svc.add_game(self.db, self.later.id, ug.id)
        TagService().add_tag(self.db, self.a.id, 'rpg')
        self.a.status = 'CURRENTLY_PLAYING'
        self.db.flush()

        self.assertEqual(self.svc.delete_queue(self.db, self.later.id), 2)
        self.assertIsNone(QueueRepository(self.db).find(self.later.id))
        self.assertIsNone(self.a.queue_id)
        self.assertIsNone(self.a.queue_position)
        self.assertEqual(self.a.status, 'CURRENTLY_PLAYING')
        self.assertEqual(TagRepository(self.db).list_for_user_game(self.a.id), ['rpg'])

    def test_delete_unknown_queue(self):
        with self.assertRaises(NotFound):
            self.svc.delete_queue(self.db, 9999)

    def test_update_queue_rename(self):
        queue = self.svc.update_queue(self.db, self.later.id, name='Someday', description='eventually')
        self.assertEqual(queue.name, 'Someday')
        self.assertEqual(queue.description, 'eventually')

    def test_update_queue_rename_conflict(self):
        with self.assertRaises(DuplicateName):
            self.svc.update_queue(self.db, self.later.id, name='Main')


class TestFilteredQueues(DatabaseMixin):

    def setUp(self):
        super().setUp()
        self.tags = TagService()
        self.svc = QueueService(self.tags)
        self.a = self._user_game('Portal 2')
        self.b = self._user_game('Hades')
        self.c = self._user_game('Celeste')
        for ug in (self.a, self.b):
            self.tags.add_tag(self.db, ug.id, 'rpg')
            self.tags.add_tag(self.db, ug.id, 'short')
        self.tags.add_tag(self.db, self.c.id, 'rpg')

    def test_filter_tags_normalised_and_stored(self):
        queue = self.svc.create_queue_with_filters(
            self.db, 'alice', 'Short RPGs', filter_tags=['Short ', 'RPG', 'rpg'])
        self.assertEqual(queue.get_filter_tags(), ['rpg', 'short'])

    def test_matching_games_placed_in_order(self):
        queue = self.svc.create_queue_with_filters(
            self.db, 'alice', 'Short RPGs', filter_tags=['rpg', 'short'])
        self.assertEqual(self._positions(queue.id), [(self.a.id, 0), (self.b.id, 1)])
        self.assertIsNone(self.c.queue_id)

    def test_games_taken_from_other_queue_leave_it_dense(self):
        main = self.svc.create_queue(self.db, 'alice', 'Main')
        for ug in (self.a, self.c, self.b):
            self.svc.add_game(self.db, main.id, ug.id)
        self.svc.create_queue_with_filters(self.db, 'alice', 'Short RPGs', filter_tags=['short'])
        self.assertEqual(self._positions(main.id), [(self.c.id, 0)])

    def test_no_matches_gives_empty_queue(self):
        queue = self.svc.create_queue_with_filters(
            self.db, 'alice', 'Horror', filter_tags=['horror'])
        self.assertEqual(self.svc.get_members(self.db, queue.id), [])
        self.assertEqual(queue.get_filter_tags(), ['horror'])

    def test_new_matches_are_advisory(self):
        queue = self.svc.create_queue_with_filters(
            self.db, 'alice', 'Short RPGs', filter_tags=['rpg', 'short'])
        self.tags.add_tag(self.db, self.c.id, 'short')

        matches = self.svc.find_new_matches(self.db, queue.id)
        self.assertEqual([ug.id for ug in matches], [self.c.id])
        self.assertIsNone(self.c.queue_id)
        self.assertEqual(len(self.svc.get_members(self.db, queue.id)), 2)

    def test_new_matches_include_games_in_other_queues(self):
        queue = self.svc.create_queue_with_filters(
            self.db, 'alice', 'Short RPGs', filter_tags=['rpg', 'short'])
        other = self.svc.create_queue(self.db, 'alice', 'Other')
        self.tags.add_tag(self.db, self.c.id, 'short')
        self.svc.add_game(self.db, other.id, self.c.id)
        self.assertEqual([ug.id for ug in self.svc.find_new_matches(self.db, queue.id)],
                         [self.c.id])

    def test_new_matches_without_filters(self):
        queue = self.svc.create_queue(self.db, 'alice', 'Plain')
        self.assertEqual(self.svc.find_new_matches(self.db, queue.id), [])

    def test_new_matches_unknown_queue(self):
        self.assertEqual(self.svc.find_new_matches(self.db, 9999), [])


class TestQueueStats(unittest.TestCase):

    def _ug(self, main=None, completion=None, progress=0.0, custom_main=None):
        game = Game(title='x', api_id='x', api_source='RAWG',
                    main_time=main, completion_time=completion)
        return UserGame(user_id='alice', status='BACKLOG', progress_percent=progress,
                        custom_main_time=custom_main, game=game)

    def test_aggregates(self):
        stats = QueueService.compute_queue_stats([
            self._ug(main=600, completion=1200, progress=50),
            self._ug(main=300, completion=None, progress=0),
        ])
        self.assertEqual(stats['total_main_time'], 900)
        self.assertEqual(stats['total_completion_time'], 1200)
        self.assertEqual(stats['completed_time'], 300)
        self.assertEqual(stats['remaining_time'], 600)
        self.assertEqual(stats['total_games'], 2)

    def test_missing_time_data_contributes_zero(self):
        stats = QueueService.compute_queue_stats([self._ug(progress=80)])
        self.assertEqual(stats['total_main_time'], 0)
        self.assertEqual(stats['completed_time'], 0)
        self.assertEqual(stats['total_games'], 1)

    def test_custom_time_overrides_catalog(self):
        stats = QueueService.compute_queue_stats([self._ug(main=600, custom_main=120, progress=50)])
        self.assertEqual(stats['total_main_time'], 120)
        self.assertEqual(stats['completed_time'], 60)

    def test_empty_queue(self):
        queue = GameQueue(user_id='alice', name='Empty')
        stats = QueueService.compute_queue_stats(queue)
        self.assertEqual(stats, {
            'total_main_time': 0, 'total_completion_time': 0,
            'completed_time': 0.0, 'remaining_time': 0.0, 'total_games': 0,
        })


if __name__ == '__main__':
    unittest.main()

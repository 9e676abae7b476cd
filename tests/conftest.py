import pytest
from datetime import datetime
from unittest.mock import MagicMock

from firebase_admin import firestore

import app as server
from countdown import CountdownWatcher
from lifecycle_timer import IST_TIMEZONE

from tests.fake_firestore import FakeFirestore, transactional

ADMIN = "admin-uid-123"
NOW = datetime(2025, 1, 1, 19, 0, 0, tzinfo=IST_TIMEZONE)


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeFirestore()
    monkeypatch.setattr(server, 'db', db)
    monkeypatch.setattr(firestore, 'transactional', transactional)
    return db


@pytest.fixture
def watcher(monkeypatch):
    countdowns = CountdownWatcher(MagicMock(), clock=lambda: NOW, tz=IST_TIMEZONE)
    monkeypatch.setattr(server, 'countdown_watcher', countdowns)
    return countdowns


@pytest.fixture
def client(fake_db, watcher, monkeypatch):
    monkeypatch.setattr(server, 'ADMIN_UID', ADMIN)
    monkeypatch.setattr(server, 'current_time', lambda: NOW)
    server.app.testing = True
    return server.app.test_client()


def add_tournament(db, tournament_id, **overrides):
    tournament = {
        'name': 'Friday Night Battle',
        'type': 'solo',
        'scheduled_date': '2025-01-01',
        'scheduled_time': '20:00',
        'prize_pool': 5000,
        'entry_fee': 50,
        'max_participants': 2,
        'status': 'upcoming',
        'room_id': None,
        'room_password': None,
    }
    tournament.update(overrides)
    db.collection('tournaments').document(tournament_id).set(tournament)
    return tournament


def add_player(db, user_id, username='shadow', in_game_name='ShadowFF'):
    db.collection('players').document(user_id).set({
        'auth_uid': user_id,
        'email': f'{username}@example.com',
        'username': username,
        'in_game_name': in_game_name,
    })

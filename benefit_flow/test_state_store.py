"""
State store tests against the Flask session and an in-memory database.
"""

from datetime import datetime, timedelta, timezone

import pytest
from benefit_flow import create_app, db
from benefit_flow.application_state import DeclaredChange
from benefit_flow.models import ApplicationStatus, StoredApplication
from benefit_flow.state_store import (
    DatabaseStateStore, SessionStateStore, StateLockedError, StateNotFoundError, get_state_store
)


SUBMISSION = {'confirmation_code': 'ABCD2345EFGH', 'submitted_on': '2025-06-01T12:00:00+00:00'}


class Clock:
    """Controllable clock for expiry tests."""

    def __init__(self):
        self.now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now += timedelta(minutes=minutes)


@pytest.fixture
def app():
    return create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    })


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture(params=['session', 'database'])
def store(request, app, clock):
    """Each store, inside a request context."""
    store_class = SessionStateStore if request.param == 'session' else DatabaseStateStore
    with app.test_request_context():
        yield store_class(timeout_minutes=20, clock=clock)


class TestStateStore:
    def test_start_and_load(self, store):
        state = store.start(context='intake', application_year={'application_year_id': '2025', 'tax_year': '2024'})
        loaded = store.load(state.id)
        assert loaded == state
        assert loaded.last_updated_on == '2025-06-01T12:00:00+00:00'
        assert loaded.application_year.tax_year == '2024'

    def test_invalid_id(self, store):
        with pytest.raises(StateNotFoundError) as excinfo:
            store.load('not-an-id')
        assert excinfo.value.reason == 'invalid_id'

    def test_unknown_id(self, store):
        with pytest.raises(StateNotFoundError) as excinfo:
            store.load('3f2b8a6e-1c4d-4e5f-9a7b-2c3d4e5f6a7b')
        assert excinfo.value.reason == 'not_found'

    def test_save_merges_patch(self, store, clock):
        state = store.start()
        store.save(state.id, {'type_of_application': 'adult', 'tax_filing': True})
        clock.advance(5)
        saved = store.save(state.id, {'tax_filing': False, 'mailing_address': {'has_changed': False}})

        assert saved.type_of_application == 'adult'
        assert saved.tax_filing is False
        assert saved.mailing_address == DeclaredChange(False)
        assert saved.last_updated_on == '2025-06-01T12:05:00+00:00'
        assert store.load(state.id) == saved

    def test_save_invalid_patch(self, store):
        state = store.start()
        with pytest.raises(ValueError):
            store.save(state.id, {'id': 'other'})
        assert store.load(state.id) == state

    def test_expired_state_is_cleared(self, store, clock):
        state = store.start()
        clock.advance(21)
        with pytest.raises(StateNotFoundError) as excinfo:
            store.load(state.id)
        assert excinfo.value.reason == 'expired'

        clock.now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        with pytest.raises(StateNotFoundError) as excinfo:
            store.load(state.id)
        assert excinfo.value.reason == 'not_found'

    def test_save_extends_timeout(self, store, clock):
        state = store.start()
        clock.advance(15)
        store.save(state.id, {'tax_filing': True})
        clock.advance(15)
        assert store.load(state.id).tax_filing is True

    def test_archive(self, store):
        state = store.start()
        store.save(state.id, {'edit_mode': True})
        archived = store.archive(state.id, SUBMISSION)
        assert archived.submission_info.confirmation_code == 'ABCD2345EFGH'
        assert archived.edit_mode is False
        assert store.load(state.id).submission_info == archived.submission_info

    def test_archived_state_is_locked(self, store):
        state = store.start()
        store.archive(state.id, SUBMISSION)
        with pytest.raises(StateLockedError):
            store.save(state.id, {'tax_filing': True})
        with pytest.raises(StateLockedError):
            store.archive(state.id, SUBMISSION)

    def test_clear(self, store):
        state = store.start()
        store.clear(state.id)
        with pytest.raises(StateNotFoundError):
            store.load(state.id)
        store.clear(state.id)
        store.clear('not-an-id')


class TestSessionStateStore:
    def test_session_key(self, app, clock):
        with app.test_request_context():
            from flask import session
            state = SessionStateStore(clock=clock).start()
            assert session['benefit-flow-' + state.id]['id'] == state.id


class TestDatabaseStateStore:
    def test_record_locked_on_archive(self, app, clock):
        with app.app_context():
            store = DatabaseStateStore(clock=clock)
            state = store.start()
            record = db.session.get(StoredApplication, state.id)
            assert record.status == ApplicationStatus.IN_PROGRESS.value
            assert record.is_locked is False

            store.archive(state.id, SUBMISSION)
            record = db.session.get(StoredApplication, state.id)
            assert record.is_locked is True
            assert record.status == ApplicationStatus.SUBMITTED.value
            assert record.locked_at is not None

    def test_write_to_locked_record(self, app, clock):
        with app.app_context():
            store = DatabaseStateStore(clock=clock)
            state = store.start()
            store.archive(state.id, SUBMISSION)
            with pytest.raises(StateLockedError):
                store._write(state)

    def test_stable_json(self, app, clock):
        with app.app_context():
            state = DatabaseStateStore(clock=clock).start(context='renewal')
            record = db.session.get(StoredApplication, state.id)
            assert record.state_json.index('"children"') < record.state_json.index('"context"')
            assert record.to_dict()['id'] == state.id


class TestGetStateStore:
    def test_default_is_session(self, app):
        with app.app_context():
            assert isinstance(get_state_store(), SessionStateStore)

    def test_database(self):
        app = create_app({'TESTING': True, 'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
                          'STATE_STORE': 'database', 'STATE_TIMEOUT_MINUTES': 5})
        with app.app_context():
            store = get_state_store()
            assert isinstance(store, DatabaseStateStore)
            assert store.timeout_minutes == 5

    def test_unknown_store(self):
        app = create_app({'TESTING': True, 'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
                          'STATE_STORE': 'redis'})
        with app.app_context():
            with pytest.raises(ValueError):
                get_state_store()

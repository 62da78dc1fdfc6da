"""
State Store Adapters

Load and save application states keyed by application id. The validators
never touch a store; the hosting layer loads a snapshot, validates it, and
saves patches.

Store Rules:
============
1. Ids must be canonical UUIDs; anything else is treated as not found
2. A state idle for longer than STATE_TIMEOUT_MINUTES is cleared and treated
   as not found
3. save() merges a patch (see application_state.apply_patch) and stamps
   last_updated_on
4. archive() attaches the submission info; an archived state cannot be saved
   or archived again
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from flask import current_app, session

from benefit_flow import db
from benefit_flow.application_state import ApplicationState, SubmissionInfo, apply_patch, start_state
from benefit_flow.models import StoredApplication
from benefit_flow.utils import is_valid_id, minutes_since, new_application_id


logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = 'benefit-flow-'
DEFAULT_TIMEOUT_MINUTES = 20


class StateNotFoundError(LookupError):
    """No live state exists for the application id."""

    def __init__(self, application_id: Any, reason: str = 'not_found'):
        self.application_id = application_id
        self.reason = reason
        super().__init__(f'Application state not found; id: [{application_id}], reason: [{reason}]')


class StateLockedError(Exception):
    """The application has been submitted and can no longer change."""

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f'Application [{application_id}] has been submitted and is locked')


class StateStore(ABC):
    """Base store; subclasses implement raw read/write/delete."""

    def __init__(self, timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
                 clock: Optional[Callable[[], datetime]] = None):
        self.timeout_minutes = timeout_minutes
        self.clock = clock

    def _now(self) -> datetime:
        if self.clock is not None:
            return self.clock()
        return datetime.now(timezone.utc)

    @abstractmethod
    def _read(self, application_id: str) -> Optional[Dict[str, Any]]:
        """Read the raw state dict, or None."""

    @abstractmethod
    def _write(self, state: ApplicationState, lock: bool = False):
        """Persist the full state."""

    @abstractmethod
    def _delete(self, application_id: str):
        """Remove the state if present."""

    def start(self, context: Optional[str] = None, application_year: Optional[Any] = None) -> ApplicationState:
        """
        Create and persist an empty state for a new flow.

        Args:
            context: 'intake' or 'renewal' for protected flows
            application_year: ApplicationYear or dict

        Returns:
            The new state
        """
        state = start_state(new_application_id(), self._now().isoformat(), context, application_year)
        self._write(state)
        logger.info(f'Application state started; id: [{state.id}]')
        return state

    def load(self, application_id: Any) -> ApplicationState:
        """
        Load the live state for an application.

        Raises:
            StateNotFoundError: If the id is malformed, unknown or expired
        """
        if not is_valid_id(application_id):
            raise StateNotFoundError(application_id, 'invalid_id')

        data = self._read(application_id)
        if data is None:
            raise StateNotFoundError(application_id)

        state = ApplicationState.from_dict(data)

        if state.last_updated_on and minutes_since(state.last_updated_on, self._now()) > self.timeout_minutes:
            logger.info(f'Application state expired; id: [{application_id}]')
            self._delete(application_id)
            raise StateNotFoundError(application_id, 'expired')

        return state

    def save(self, application_id: Any, patch: Mapping[str, Any]) -> ApplicationState:
        """
        Merge a patch into the stored state.

        Raises:
            StateNotFoundError: If there is no live state
            StateLockedError: If the application was submitted
            ValueError: If the patch is invalid
        """
        state = self.load(application_id)
        if state.submission_info is not None:
            raise StateLockedError(state.id)

        updated = replace(apply_patch(state, patch), last_updated_on=self._now().isoformat())
        self._write(updated)
        return updated

    def archive(self, application_id: Any, submission_info: Any) -> ApplicationState:
        """
        Mark the application submitted.

        Args:
            application_id: Application id
            submission_info: SubmissionInfo or dict

        Returns:
            The archived state
        """
        state = self.load(application_id)
        if state.submission_info is not None:
            raise StateLockedError(state.id)

        archived = replace(
            state,
            submission_info=SubmissionInfo.from_dict(submission_info),
            edit_mode=False,
            last_updated_on=self._now().isoformat()
        )
        self._write(archived, lock=True)
        logger.info(f'Application state archived; id: [{state.id}]')
        return archived

    def clear(self, application_id: Any):
        """Remove the state for an application; unknown ids are ignored."""
        if is_valid_id(application_id):
            self._delete(application_id)


class SessionStateStore(StateStore):
    """Keeps states in the Flask session, one key per application."""

    @staticmethod
    def session_key(application_id: str) -> str:
        return f'{SESSION_KEY_PREFIX}{application_id}'

    def _read(self, application_id):
        return session.get(self.session_key(application_id))

    def _write(self, state, lock=False):
        session[self.session_key(state.id)] = state.to_dict()

    def _delete(self, application_id):
        session.pop(self.session_key(application_id), None)


class DatabaseStateStore(StateStore):
    """Keeps states in the application_states table."""

    def _read(self, application_id):
        record = db.session.get(StoredApplication, application_id)
        if record is None:
            return None
        return record.get_state()

    def _write(self, state, lock=False):
        record = db.session.get(StoredApplication, state.id)
        if record is None:
            record = StoredApplication(id=state.id)
            db.session.add(record)
        elif record.is_locked:
            raise StateLockedError(state.id)

        record.set_state(state.to_dict())
        if lock:
            record.lock()
        db.session.commit()

    def _delete(self, application_id):
        record = db.session.get(StoredApplication, application_id)
        if record is not None:
            db.session.delete(record)
            db.session.commit()


def get_state_store() -> StateStore:
    """
    Get the store configured for the current application.

    Raises:
        ValueError: If STATE_STORE names an unknown store
    """
    kind = current_app.config.get('STATE_STORE', 'session')
    timeout = int(current_app.config.get('STATE_TIMEOUT_MINUTES', DEFAULT_TIMEOUT_MINUTES))

    if kind == 'session':
        return SessionStateStore(timeout)
    if kind == 'database':
        return DatabaseStateStore(timeout)

    raise ValueError(f'Unknown state store [{kind}]')

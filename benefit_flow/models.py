"""
Database models for the benefit application flows.

Stores one application state per row, with:
- Stable JSON serialization of the state
- Idle tracking through last_updated_on
- Locking once the application is submitted
"""

import json
from enum import Enum as PyEnum

from benefit_flow import db
from benefit_flow.utils import utcnow


class ApplicationStatus(PyEnum):
    """Application lifecycle states."""
    IN_PROGRESS = 'in_progress'
    SUBMITTED = 'submitted'  # Final state - cannot be modified


class StoredApplication(db.Model):
    """
    Stores an in-progress application state keyed by application id.
    """
    __tablename__ = 'application_states'

    id = db.Column(db.String(36), primary_key=True)

    # State payload
    state_json = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(20), default=ApplicationStatus.IN_PROGRESS.value, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_updated_on = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Locking for immutability after submission
    is_locked = db.Column(db.Boolean, default=False, nullable=False)
    locked_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<StoredApplication {self.id} - {self.status}>'

    def to_dict(self):
        """Convert the record to a dictionary for API responses."""
        return {
            'id': self.id,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_updated_on': self.last_updated_on.isoformat() if self.last_updated_on else None,
            'is_locked': self.is_locked,
            'locked_at': self.locked_at.isoformat() if self.locked_at else None,
        }

    def get_state(self):
        """Deserialize the JSON state."""
        return json.loads(self.state_json)

    def set_state(self, state):
        """Serialize the state to JSON with stable ordering."""
        self.state_json = json.dumps(state, sort_keys=True)
        self.last_updated_on = utcnow()

    def lock(self):
        """Lock the record once the application is submitted."""
        self.is_locked = True
        self.locked_at = utcnow()
        self.status = ApplicationStatus.SUBMITTED.value

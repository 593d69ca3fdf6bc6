"""
Identity & Change Tracker.

The GraphQL servers we talk to do not hand back a stable object ID, so the
content hash of the create/update response stands in for one. The same hash,
stored as ``existing_hash``, records whether the object has been created.
"""

import hashlib
from enum import Enum

from models import ResourceState


class Presence(Enum):
    """Existence of the remote object as seen from persisted state."""

    ABSENT = "absent"
    PRESENT = "present"


def content_hash(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw response bytes."""
    return hashlib.sha256(data).hexdigest()


def presence(state: ResourceState) -> Presence:
    """Absent until a create or update has succeeded, Present afterwards."""
    return Presence.PRESENT if state.existing_hash else Presence.ABSENT


def response_changed(previous: bytes, current: bytes) -> bool:
    """
    Compare two read responses by content hash.

    An empty previous response (first read) never counts as a change.
    """
    if not previous:
        return False
    return content_hash(previous) != content_hash(current)

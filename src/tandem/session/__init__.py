"""
Session persistence — sessions, messages and message parts.

Sub-agent sessions link to their parent through parent_id.
"""

from tandem.session.models import (
    Message,
    MessagePart,
    MessageRole,
    PartStatus,
    PartType,
    Session,
    SessionStatus,
)
from tandem.session.store import SessionStore

__all__ = [
    "Message",
    "MessagePart",
    "MessageRole",
    "PartStatus",
    "PartType",
    "Session",
    "SessionStatus",
    "SessionStore",
]

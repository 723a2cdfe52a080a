"""
BidHub SQLAlchemy Models
========================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from bidhub.models import Base, Bid, Conversation, Message
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Users & projects (owned by the account / project services) --
from .user import User, UserRole
from .project import Project, ProjectStatus

# -- Bids --
from .bid import Bid, BidItem, BidStatus, BidStatusLog, ContractorType

# -- Chat --
from .chat import (
    Conversation,
    ConversationParticipant,
    ConversationType,
    Message,
    MessageType,
    make_direct_key,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Users & projects
    "User",
    "UserRole",
    "Project",
    "ProjectStatus",
    # Bids
    "Bid",
    "BidItem",
    "BidStatus",
    "BidStatusLog",
    "ContractorType",
    # Chat
    "Conversation",
    "ConversationParticipant",
    "ConversationType",
    "Message",
    "MessageType",
    "make_direct_key",
]

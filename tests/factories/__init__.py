"""Test factories for generating test data.

Re-exports all factories for convenient imports:
    from tests.factories import UserFactory, UserInvitationFactory
"""

from tests.factories.base import BaseFactory, generate_uuid, utc_now
from tests.factories.invitation import UserInvitationFactory
from tests.factories.user import UserFactory

__all__ = [
    # Base
    "BaseFactory",
    "generate_uuid",
    "utc_now",
    # Models
    "UserFactory",
    "UserInvitationFactory",
]

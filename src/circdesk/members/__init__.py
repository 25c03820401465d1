"""Member subscription snapshots.

Provides functionality for:
- Storing the provider's view of a member's tier and status
- Extending, cancelling and expiring subscriptions from payment callbacks
"""

from .manager import MemberManager
from .models import Member
from .schemas import MemberResponse, MemberSnapshot, SubscriptionStatus, SubscriptionTier

__all__ = [
    "MemberManager",
    "Member",
    "MemberResponse",
    "MemberSnapshot",
    "SubscriptionStatus",
    "SubscriptionTier",
]

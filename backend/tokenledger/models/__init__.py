from tokenledger.models.action_cost import ActionCost
from tokenledger.models.base import Base
from tokenledger.models.organization import Organization
from tokenledger.models.transaction import TokenTransaction
from tokenledger.models.user import User, UserRole
from tokenledger.models.wallet import OrganizationWallet, UserTokenAllocation

__all__ = [
    "Base",
    "Organization",
    "User", "UserRole",
    "OrganizationWallet", "UserTokenAllocation",
    "ActionCost",
    "TokenTransaction",
]

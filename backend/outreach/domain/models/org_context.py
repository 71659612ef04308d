"""
Org Context
Explicit caller identity passed into every run operation
"""
from pydantic import BaseModel
from typing import Optional


SYSTEM_USER_ID = "system"


class OrgContext(BaseModel):
    """Organization (and user) on whose behalf an operation runs."""
    org_id: Optional[str] = None
    user_id: Optional[str] = None
    is_super_admin: bool = False

    @classmethod
    def system(cls, org_id: Optional[str] = None) -> "OrgContext":
        """Context for the worker and provider webhooks."""
        return cls(org_id=org_id, user_id=SYSTEM_USER_ID, is_super_admin=org_id is None)

    def can_access(self, org_id: Optional[str]) -> bool:
        return self.is_super_admin or (self.org_id is not None and self.org_id == org_id)

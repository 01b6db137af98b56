"""
Tenant scoping for church-owned rows. Every query over a tenant-scoped model goes through
`TenantScope.apply` so the `church_id` filter lives in one place.
"""
from typing import Optional

from sqlalchemy.orm import Query


# PUBLIC_INTERFACE
class TenantScope:
    """
    Restricts queries to one church. A scope with church_id None is installation-wide
    (super admins and single-congregation installs) and applies no filter.
    """

    def __init__(self, church_id: Optional[int]):
        self.church_id = church_id

    @property
    def is_global(self) -> bool:
        return self.church_id is None

    def apply(self, query: Query, model) -> Query:
        if self.church_id is None:
            return query
        return query.filter(model.church_id == self.church_id)

    def assign(self, requested_church_id: Optional[int]) -> Optional[int]:
        """church_id for a new row: tenant admins always write into their own church."""
        if self.church_id is not None:
            return self.church_id
        return requested_church_id

    def __repr__(self) -> str:
        return f"TenantScope(church_id={self.church_id!r})"

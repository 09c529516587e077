"""
Multi-tenancy helpers. Every engine query is scoped by tenant_id.
"""
from .queries import (
    get_staff_qualifications,
    get_staff_schedule,
    get_tenant,
    get_tenant_work_hours,
    require_owned,
    scoped_select,
)

__all__ = [
    "get_staff_qualifications",
    "get_staff_schedule",
    "get_tenant",
    "get_tenant_work_hours",
    "require_owned",
    "scoped_select",
]

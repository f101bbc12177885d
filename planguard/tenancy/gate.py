"""Pure authorization predicates over a resolved tenant."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from planguard.exceptions import Forbidden
from planguard.tenancy.context import TenantDescriptor
from planguard.types import Role

logger = structlog.get_logger(__name__)

PERMISSION_KEYS = (
    "manage_projects",
    "manage_team",
    "manage_billing",
    "view_reports",
    "export_data",
)

_MEMBER_DEFAULTS = {
    "manage_projects": True,
    "manage_team": False,
    "manage_billing": False,
    "view_reports": True,
    "export_data": False,
}


def default_permissions(role: Role | str) -> dict[str, bool]:
    """Permission flags a new membership starts with for ``role``."""
    role = Role(role)
    if role in (Role.OWNER, Role.ADMIN):
        return dict.fromkeys(PERMISSION_KEYS, True)
    if role == Role.VIEWER:
        return {key: key == "view_reports" for key in PERMISSION_KEYS}
    return dict(_MEMBER_DEFAULTS)


def require_role(tenant: TenantDescriptor, allowed: Iterable[Role | str]) -> None:
    allowed_roles = {Role(r) for r in allowed}
    if tenant.role not in allowed_roles:
        logger.warning(
            "role_denied",
            org_id=tenant.org_id,
            user_id=tenant.user_id,
            role=str(tenant.role),
            required=sorted(allowed_roles),
        )
        raise Forbidden.for_roles(allowed_roles, tenant.role)


def require_permission(tenant: TenantDescriptor, permission: str) -> None:
    """Owners pass every permission check; everyone else needs the flag."""
    if tenant.role == Role.OWNER:
        return
    if not tenant.permissions.get(permission, False):
        logger.warning(
            "permission_denied",
            org_id=tenant.org_id,
            user_id=tenant.user_id,
            permission=permission,
        )
        raise Forbidden.for_permission(permission)


def require_feature(tenant: TenantDescriptor, feature: str) -> None:
    if not tenant.features.enabled(feature):
        logger.info(
            "feature_denied", org_id=tenant.org_id, feature=feature, plan=str(tenant.plan)
        )
        raise Forbidden.for_feature(feature, tenant.plan)

"""Unit tests for role, permission and feature gates."""

from __future__ import annotations

import pytest

from planguard.billing.plans import get_plan
from planguard.exceptions import Forbidden
from planguard.tenancy.context import TenantDescriptor
from planguard.tenancy.gate import (
    default_permissions,
    require_feature,
    require_permission,
    require_role,
)
from planguard.types import PlanTier, Role, SubscriptionStatus


def _make_tenant(role: Role, plan: str = "starter", **permissions: bool) -> TenantDescriptor:
    definition = get_plan(plan)
    return TenantDescriptor(
        org_id="org-1",
        user_id="user-1",
        role=role,
        plan=PlanTier(plan),
        limits=definition.limits,
        features=definition.features,
        permissions={**default_permissions(role), **permissions},
        subscription_status=SubscriptionStatus.ACTIVE,
    )


@pytest.mark.unit
class TestRequireRole:
    def test_allowed_role_passes(self) -> None:
        require_role(_make_tenant(Role.ADMIN), [Role.OWNER, Role.ADMIN])

    def test_other_role_is_forbidden(self) -> None:
        with pytest.raises(Forbidden) as exc_info:
            require_role(_make_tenant(Role.MEMBER), [Role.OWNER, Role.ADMIN])
        details = exc_info.value.details
        assert details["required_roles"] == ["admin", "owner"]
        assert details["current_role"] == "member"
        assert exc_info.value.status_code == 403

    def test_accepts_plain_strings(self) -> None:
        require_role(_make_tenant(Role.OWNER), ["owner"])


@pytest.mark.unit
class TestRequirePermission:
    def test_owner_always_passes(self) -> None:
        require_permission(_make_tenant(Role.OWNER, manage_billing=False), "manage_billing")

    def test_member_defaults(self) -> None:
        member = _make_tenant(Role.MEMBER)
        require_permission(member, "manage_projects")
        require_permission(member, "view_reports")
        with pytest.raises(Forbidden) as exc_info:
            require_permission(member, "manage_billing")
        assert exc_info.value.details["permission"] == "manage_billing"

    def test_granted_flag_passes(self) -> None:
        require_permission(_make_tenant(Role.MEMBER, export_data=True), "export_data")

    def test_viewer_can_only_view_reports(self) -> None:
        viewer = _make_tenant(Role.VIEWER)
        require_permission(viewer, "view_reports")
        with pytest.raises(Forbidden):
            require_permission(viewer, "manage_projects")

    def test_unknown_permission_is_denied(self) -> None:
        with pytest.raises(Forbidden):
            require_permission(_make_tenant(Role.ADMIN), "launch_rockets")


@pytest.mark.unit
class TestRequireFeature:
    def test_plan_with_feature_passes(self) -> None:
        require_feature(_make_tenant(Role.MEMBER, plan="team"), "api_access")

    def test_plan_without_feature_is_forbidden(self) -> None:
        with pytest.raises(Forbidden) as exc_info:
            require_feature(_make_tenant(Role.OWNER, plan="pro"), "white_label")
        details = exc_info.value.details
        assert details["feature"] == "white_label"
        assert details["upgrade_url"] == "/billing/upgrade?feature=white_label&from=pro"

"""Exception hierarchy for planguard.

Every error carries an HTTP status, a machine-readable code and structured
details so the web layer can render an actionable response without a second
round trip.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class PlanGuardError(Exception):
    """Base exception for all planguard errors."""

    status_code = 500
    code = "internal_error"
    default_message = "Internal error"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message, **self.details}


class ConfigurationError(PlanGuardError):
    """Raised when configuration or catalog data is invalid."""

    code = "configuration_error"
    default_message = "Invalid configuration"


class AuthenticationRequired(PlanGuardError):
    status_code = 401
    code = "authentication_required"
    default_message = "Authentication required"


class OrganizationContextMissing(PlanGuardError):
    status_code = 400
    code = "organization_context_missing"
    default_message = "Organization context required"


class OrganizationNotFound(PlanGuardError):
    status_code = 404
    code = "organization_not_found"
    default_message = "Organization not found"

    def __init__(self, org_id: str) -> None:
        super().__init__(organization_id=org_id)


class NotAMember(PlanGuardError):
    status_code = 403
    code = "not_a_member"
    default_message = "You do not have access to this organization"

    def __init__(self, org_id: str) -> None:
        super().__init__(organization_id=org_id)


class SubscriptionInactive(PlanGuardError):
    status_code = 402
    code = "subscription_inactive"
    default_message = "Organization subscription is not active"

    def __init__(self, status: str, *, trial_expired: bool, days_left_in_trial: int) -> None:
        super().__init__(
            requires_payment=True,
            subscription_status=status,
            trial_expired=trial_expired,
            days_left_in_trial=days_left_in_trial,
        )
        self.days_left_in_trial = days_left_in_trial


class PaymentRequired(PlanGuardError):
    status_code = 402
    code = "payment_required"
    default_message = "Payment is past due. Please update your payment method."

    def __init__(self, status: str) -> None:
        super().__init__(
            subscription_status=status,
            update_payment_url="/billing/payment-method",
        )


class Forbidden(PlanGuardError):
    status_code = 403
    code = "forbidden"
    default_message = "Insufficient permissions"

    @classmethod
    def for_roles(cls, required: Iterable[str], current: str) -> Forbidden:
        roles = sorted(str(r) for r in required)
        return cls(
            f"This action requires one of the following roles: {', '.join(roles)}",
            required_roles=roles,
            current_role=str(current),
        )

    @classmethod
    def for_permission(cls, permission: str) -> Forbidden:
        return cls(f"This action requires {permission} permission", permission=permission)

    @classmethod
    def for_feature(cls, feature: str, plan: str) -> Forbidden:
        return cls(
            "This feature requires a higher plan",
            feature=feature,
            current_plan=plan,
            upgrade_required=True,
            upgrade_url=f"/billing/upgrade?feature={feature}&from={plan}",
        )


class LimitExceeded(PlanGuardError):
    status_code = 403
    code = "limit_exceeded"

    def __init__(self, resource: str, *, limit: int, current: float, plan: str) -> None:
        super().__init__(
            f"You have reached your {resource} limit",
            resource=str(resource),
            limit=limit,
            current=current,
            plan=str(plan),
            upgrade_required=True,
            upgrade_url=f"/billing/upgrade?from={plan}",
        )
        self.resource = str(resource)
        self.limit = limit
        self.current = current


class AlreadySubscribed(PlanGuardError):
    status_code = 409
    code = "already_subscribed"
    default_message = (
        "Active subscription already exists. Please upgrade or change your plan instead."
    )


class UsageExceedsTargetPlan(PlanGuardError):
    status_code = 409
    code = "usage_exceeds_target_plan"

    def __init__(self, dimension: str, *, current: float, limit: int, target_plan: str) -> None:
        super().__init__(
            f"Cannot change to {target_plan}: current {dimension} usage exceeds its limit",
            dimension=str(dimension),
            current=current,
            limit=limit,
            target_plan=str(target_plan),
        )
        self.dimension = str(dimension)
        self.current = current
        self.limit = limit


class InvalidTransition(PlanGuardError):
    status_code = 409
    code = "invalid_transition"
    default_message = "Subscription cannot make this transition"


class NotFound(PlanGuardError):
    status_code = 404
    code = "not_found"
    default_message = "No subscription found"


class InvalidPeriod(PlanGuardError, ValueError):
    status_code = 422
    code = "invalid_period"
    default_message = "Billing period must span at least one day"


class ExternalServiceError(PlanGuardError):
    """Raised when the payment processor is unreachable or rejects a call."""

    status_code = 502
    code = "external_service_error"

    def __init__(self, operation: str, reason: str, *, processor_status: int | None = None) -> None:
        super().__init__(
            f"Payment processor call failed: {reason}",
            operation=operation,
            processor_status=processor_status,
        )
        self.operation = operation


class WebhookVerificationFailed(PlanGuardError):
    status_code = 400
    code = "webhook_verification_failed"
    default_message = "Invalid webhook signature"


class WebhookProcessingError(PlanGuardError):
    """Raised when a verified webhook could not be applied; the processor will retry."""

    status_code = 503
    code = "webhook_processing_error"
    default_message = "Webhook could not be processed, retry later"

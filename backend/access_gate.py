"""Decide what a caller may see of a component version.

Absence of access is a normal outcome here, never an exception. The preview
code is always public; the full code is shown only for free components or to
callers whose license tier is sufficient.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from version_spec import VersionOut, VersionWithAccess

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = ("code_full", "code_encrypted", "dark_mode_code", "integration_code", "files")


class SubscriptionLookup(Protocol):
    def has_sufficient_tier(self, user_id: str, required_tier: Optional[str] = None) -> bool: ...


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    can_view_code: bool
    can_copy: bool
    can_download: bool
    code_to_show: Optional[str]


def _granted(version: Any) -> AccessDecision:
    return AccessDecision(
        has_access=True,
        can_view_code=True,
        can_copy=True,
        can_download=True,
        code_to_show=version.code_full or version.code_preview,
    )


def _denied(version: Any) -> AccessDecision:
    return AccessDecision(
        has_access=False,
        can_view_code=False,
        can_copy=False,
        can_download=False,
        code_to_show=version.code_preview,
    )


def check_subscription(
    subscriptions: Optional[SubscriptionLookup], user_id: str, required_tier: Optional[str]
) -> bool:
    """Ask the subscription lookup, failing closed on any error."""

    if subscriptions is None:
        return False
    try:
        return bool(subscriptions.has_sufficient_tier(user_id, required_tier))
    except Exception as exc:  # noqa: BLE001 - fail closed
        logger.warning("Subscription lookup failed for user %s, denying access: %s", user_id, exc)
        return False


def resolve_access(
    component: Any,
    version: Any,
    user_id: Optional[str],
    subscriptions: Optional[SubscriptionLookup],
) -> AccessDecision:
    if component.is_free:
        return _granted(version)
    if not user_id:
        return _denied(version)
    if check_subscription(subscriptions, user_id, getattr(component, "required_tier", None)):
        return _granted(version)
    return _denied(version)


def with_access(version: Any, decision: AccessDecision) -> VersionWithAccess:
    """Attach the access decision to a version, masking gated fields."""

    data = VersionOut.model_validate(version).model_dump()
    if not decision.has_access:
        for field in SENSITIVE_FIELDS:
            data[field] = None
    data.update(
        has_access=decision.has_access,
        can_view_code=decision.can_view_code,
        can_copy=decision.can_copy,
        can_download=decision.can_download,
        code_to_show=decision.code_to_show,
    )
    return VersionWithAccess.model_validate(data)

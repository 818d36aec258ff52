"""Subscription lookups used by the access gate.

Two implementations share one contract, ``has_sufficient_tier``:

- :class:`SqlSubscriptionLookup` reads the local ``licenses`` table.
- :class:`RemoteSubscriptionLookup` asks a licensing service over HTTP.

Both raise :class:`SubscriptionLookupError` when they cannot answer. Turning
that into "no access" is the access gate's job, not theirs.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx  # type: ignore[import-not-found]
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from version_models import License

logger = logging.getLogger(__name__)

TIER_ORDER: Dict[str, int] = {"free": 1, "pro": 2, "team": 3, "enterprise": 4}


class SubscriptionLookupError(RuntimeError):
    """Raised when the subscription state of a user cannot be determined."""


def default_required_tier() -> str:
    tier = os.getenv("REQUIRED_LICENSE_TIER", "pro").strip().lower()
    return tier if tier in TIER_ORDER else "pro"


def tier_satisfies(user_tier: Optional[str], required_tier: str) -> bool:
    return TIER_ORDER.get(user_tier or "", 0) >= TIER_ORDER.get(required_tier, TIER_ORDER["pro"])


def _as_aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SqlSubscriptionLookup:
    def __init__(self, session: Session):
        self.session = session

    def has_sufficient_tier(self, user_id: str, required_tier: Optional[str] = None) -> bool:
        required = required_tier or default_required_tier()
        now = datetime.now(timezone.utc)
        stmt = select(License).where(
            License.user_id == user_id,
            License.is_active.is_(True),
            License.payment_status == "completed",
        )
        try:
            licenses = list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise SubscriptionLookupError(f"Failed to read licenses for user {user_id}: {exc}") from exc

        active = [lic for lic in licenses if lic.valid_until is None or _as_aware(lic.valid_until) >= now]
        result = any(tier_satisfies(lic.tier, required) for lic in active)
        logger.debug("Subscription check user=%s required=%s -> %s", user_id, required, result)
        return result


class RemoteSubscriptionLookup:
    """Minimal HTTP client for the licensing service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        resolved_base = base_url or os.getenv("LICENSE_SERVICE_BASE_URL")
        if not resolved_base:
            raise SubscriptionLookupError("LICENSE_SERVICE_BASE_URL is not set.")
        self._base_url = resolved_base.rstrip("/")
        self._token = token or os.getenv("LICENSE_SERVICE_TOKEN") or None

        if timeout is None:
            timeout_env = os.getenv("LICENSE_SERVICE_TIMEOUT_SECONDS")
            if timeout_env:
                try:
                    timeout = float(timeout_env)
                except ValueError as exc:
                    raise SubscriptionLookupError(
                        f"Invalid LICENSE_SERVICE_TIMEOUT_SECONDS value: {timeout_env}"
                    ) from exc
            else:
                timeout = 5.0
        self._timeout = timeout

    def _get(self, path: str) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            return httpx.get(url, headers=headers, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise SubscriptionLookupError(f"Failed to reach licensing service at {url}: {exc}") from exc

    def has_sufficient_tier(self, user_id: str, required_tier: Optional[str] = None) -> bool:
        required = required_tier or default_required_tier()
        response = self._get(f"/api/v1/subscriptions/{user_id}")

        if response.status_code == 404:
            return False

        if not response.is_success:
            detail = f"{response.status_code} {response.reason_phrase}"
            raise SubscriptionLookupError(f"Licensing service responded with error: {detail}")

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise SubscriptionLookupError("Licensing service returned invalid JSON payload.") from exc

        if not payload.get("active"):
            return False
        return tier_satisfies(payload.get("tier"), required)


class UnavailableSubscriptionLookup:
    """Stands in for a licensing client that could not be configured."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def has_sufficient_tier(self, user_id: str, required_tier: Optional[str] = None) -> bool:
        raise SubscriptionLookupError(f"Licensing service unavailable: {self.reason}")


def build_subscription_lookup(session: Session):
    """Remote lookup when a licensing service is configured, SQL otherwise.

    A remote lookup that cannot be configured still answers every check with
    :class:`SubscriptionLookupError`, which the access gate treats as no access.
    """

    if os.getenv("LICENSE_SERVICE_BASE_URL"):
        try:
            return RemoteSubscriptionLookup()
        except SubscriptionLookupError as exc:
            logger.error("Licensing service misconfigured, gated content stays locked: %s", exc)
            return UnavailableSubscriptionLookup(str(exc))
    return SqlSubscriptionLookup(session)

from datetime import datetime, timezone
from types import SimpleNamespace

from access_gate import SENSITIVE_FIELDS, check_subscription, resolve_access, with_access


class StubSubscriptions:
    def __init__(self, allowed=(), error=None):
        self.allowed = set(allowed)
        self.error = error
        self.calls = []

    def has_sufficient_tier(self, user_id, required_tier=None):
        self.calls.append((user_id, required_tier))
        if self.error is not None:
            raise self.error
        return user_id in self.allowed


def _component(is_free=False, required_tier="pro"):
    return SimpleNamespace(id="c1", is_free=is_free, required_tier=required_tier)


def _version():
    now = datetime.now(timezone.utc)
    return SimpleNamespace(
        id="v1",
        component_id="c1",
        version_number="1.0.0",
        framework="vue",
        css_framework="vanilla_css",
        code_preview="<div>preview</div>",
        code_full="<template><div>full</div></template>",
        code_encrypted="ZW5jcnlwdGVk",
        dependencies=[{"name": "vue"}],
        config_required=None,
        supports_dark_mode=True,
        dark_mode_code="<div class='dark'>full</div>",
        integrations=None,
        integration_code={"stripe": "init()"},
        files=[{"path": "Card.vue"}],
        is_default=True,
        created_at=now,
        updated_at=now,
    )


def test_free_component_grants_everyone_full_access():
    subscriptions = StubSubscriptions()

    decision = resolve_access(_component(is_free=True), _version(), None, subscriptions)

    assert decision.has_access and decision.can_view_code and decision.can_copy and decision.can_download
    assert decision.code_to_show == "<template><div>full</div></template>"
    assert subscriptions.calls == []


def test_anonymous_caller_gets_preview_only():
    decision = resolve_access(_component(), _version(), None, StubSubscriptions(allowed={"u1"}))

    assert decision.has_access is False
    assert decision.can_copy is False
    assert decision.code_to_show == "<div>preview</div>"


def test_sufficient_tier_grants_full_access():
    subscriptions = StubSubscriptions(allowed={"u1"})

    decision = resolve_access(_component(required_tier="team"), _version(), "u1", subscriptions)

    assert decision.has_access is True
    assert subscriptions.calls == [("u1", "team")]


def test_insufficient_tier_gets_preview_only():
    decision = resolve_access(_component(), _version(), "u2", StubSubscriptions(allowed={"u1"}))

    assert decision.has_access is False
    assert decision.can_download is False


def test_lookup_failure_fails_closed():
    subscriptions = StubSubscriptions(allowed={"u1"}, error=ConnectionError("licensing down"))

    decision = resolve_access(_component(), _version(), "u1", subscriptions)

    assert decision.has_access is False
    assert decision.code_to_show == "<div>preview</div>"


def test_missing_lookup_denies():
    assert check_subscription(None, "u1", "pro") is False


def test_full_code_falls_back_to_preview_when_granted():
    version = _version()
    version.code_full = None

    decision = resolve_access(_component(is_free=True), version, None, None)

    assert decision.code_to_show == "<div>preview</div>"


def test_denied_output_masks_sensitive_fields():
    version = _version()
    decision = resolve_access(_component(), version, None, None)

    out = with_access(version, decision)

    for field in SENSITIVE_FIELDS:
        assert getattr(out, field) is None
    assert out.code_preview == "<div>preview</div>"
    assert out.has_access is False
    dumped = out.model_dump(by_alias=True)
    assert dumped["codeToShow"] == "<div>preview</div>"
    assert dumped["canViewCode"] is False


def test_granted_output_keeps_everything():
    version = _version()
    decision = resolve_access(_component(is_free=True), version, None, None)

    out = with_access(version, decision)

    assert out.code_full == version.code_full
    assert out.integration_code == {"stripe": "init()"}
    assert out.is_default is True

from __future__ import annotations

from datetime import timedelta

from aws_action_governor.execution.approvals import ApprovalTokenStore


def test_issue_returns_opaque_token() -> None:
    store = ApprovalTokenStore(ttl_seconds=900)

    token = store.issue("plan-1", "user-1", "conn-1")

    assert len(token.token) == 64
    assert token.expires_at - token.created_at == timedelta(seconds=900)
    assert token.to_dict() == {
        "token": token.token,
        "plan_id": "plan-1",
        "expires_at": token.expires_at.isoformat(),
    }
    assert len(store) == 1


def test_token_is_single_use() -> None:
    store = ApprovalTokenStore()
    token = store.issue("plan-1", "user-1", "conn-1")

    first = store.validate_and_consume(token.token, "plan-1", "user-1")
    second = store.validate_and_consume(token.token, "plan-1", "user-1")

    assert first.valid
    assert not second.valid
    assert second.code == "approval_used"


def test_unknown_token() -> None:
    decision = ApprovalTokenStore().validate_and_consume("nope", "plan-1", "user-1")

    assert not decision.valid
    assert decision.code == "approval_invalid"
    assert decision.reason == "Invalid approval token"


def test_expired_token() -> None:
    store = ApprovalTokenStore(ttl_seconds=60)
    token = store.issue("plan-1", "user-1", "conn-1")

    decision = store.validate_and_consume(
        token.token, "plan-1", "user-1", now=token.expires_at
    )

    assert not decision.valid
    assert decision.code == "approval_expired"


def test_token_bound_to_plan_and_user() -> None:
    store = ApprovalTokenStore()
    token = store.issue("plan-1", "user-1", "conn-1")

    wrong_plan = store.validate_and_consume(token.token, "plan-2", "user-1")
    wrong_user = store.validate_and_consume(token.token, "plan-1", "user-2")
    right = store.validate_and_consume(token.token, "plan-1", "user-1")

    assert wrong_plan.code == "approval_mismatch"
    assert wrong_user.code == "approval_mismatch"
    # Mismatches do not burn the token.
    assert right.valid


def test_sweep_drops_only_expired_tokens() -> None:
    store = ApprovalTokenStore(ttl_seconds=60)
    old = store.issue("plan-1", "user-1", "conn-1")
    store.validate_and_consume(old.token, "plan-1", "user-1")
    fresh = store.issue("plan-2", "user-1", "conn-1")

    assert store.sweep(now=old.created_at + timedelta(seconds=30)) == 0
    assert len(store) == 2

    removed = store.sweep(now=fresh.expires_at)

    assert removed == 2
    assert len(store) == 0

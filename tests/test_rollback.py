"""Tests for rollback target resolution."""

from sitesync.models import DeploymentRecord, Outcome
from sitesync.result import ErrorKind
from sitesync.store import MemoryStore
from sitesync.sync.ledger import HistoryLedger
from sitesync.sync.rollback import RollbackResolver, RollbackStrategy, looks_like_commit

SHA_2 = "2" * 40
SHA_3 = "3" * 40
SHA_5 = "5" * 40


def _ledger(*records):
    ledger = HistoryLedger(MemoryStore())
    for record in reversed(records):  # Records are given newest first
        ledger.append(record)
    return ledger


def _record(id, commit, outcome=Outcome.SUCCESS, is_rollback=False, snapshot_id=None):
    return DeploymentRecord(
        id=id,
        timestamp="2024-01-01T00:00:00+00:00",
        actor="test",
        commit=commit,
        branch="main",
        outcome=outcome,
        is_rollback=is_rollback,
        snapshot_id=snapshot_id,
    )


def test_previous_skips_rollback_records():
    ledger = _ledger(
        _record("D5", SHA_5),
        _record("D4", SHA_3, is_rollback=True),
        _record("D3", SHA_3, snapshot_id="snapshot-3"),
        _record("D2", SHA_2),
    )
    plan = RollbackResolver(ledger).resolve("previous").value

    assert plan.deployment_id == "D3"
    assert plan.strategy == RollbackStrategy.RESTORE_SNAPSHOT
    assert plan.snapshot_id == "snapshot-3"
    assert plan.can_fall_back_to_commit


def test_last_is_a_synonym_for_previous():
    ledger = _ledger(_record("D2", SHA_5), _record("D1", SHA_2))
    assert RollbackResolver(ledger).resolve("LAST").value.deployment_id == "D1"


def test_previous_needs_two_successes():
    ledger = _ledger(_record("D2", SHA_5), _record("D1", SHA_2, outcome=Outcome.FAILED))
    result = RollbackResolver(ledger).resolve("previous")
    assert result.error == ErrorKind.NO_PREVIOUS_DEPLOYMENT


def test_deployment_id_without_snapshot_redeploys_commit():
    ledger = _ledger(_record("D1", SHA_2))
    plan = RollbackResolver(ledger).resolve("D1").value
    assert plan.strategy == RollbackStrategy.REDEPLOY_COMMIT
    assert plan.commit == SHA_2


def test_commit_found_in_ledger_uses_its_deployment():
    ledger = _ledger(_record("D1", SHA_2, snapshot_id="snapshot-1"))
    plan = RollbackResolver(ledger).resolve(SHA_2[:8]).value
    assert plan.deployment_id == "D1"
    assert plan.strategy == RollbackStrategy.RESTORE_SNAPSHOT


def test_unknown_commit_is_redeployed():
    plan = RollbackResolver(_ledger()).resolve("abcdef1234").value
    assert plan.strategy == RollbackStrategy.REDEPLOY_COMMIT
    assert plan.commit == "abcdef1234"
    assert plan.deployment_id is None


def test_unknown_non_commit_target_is_not_found():
    result = RollbackResolver(_ledger()).resolve("deploy-missing")
    assert result.error == ErrorKind.NOT_FOUND
    assert RollbackResolver(_ledger()).resolve("").error == ErrorKind.NOT_FOUND


def test_record_without_snapshot_or_commit_is_not_found():
    ledger = _ledger(_record("D1", ""))
    assert RollbackResolver(ledger).resolve("D1").error == ErrorKind.NOT_FOUND


def test_looks_like_commit():
    assert looks_like_commit("abc1234")
    assert looks_like_commit("A" * 40)
    assert not looks_like_commit("abc123")
    assert not looks_like_commit("main")
    assert not looks_like_commit("g" * 10)

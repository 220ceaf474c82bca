# test_conflict_policy.py
#
# Imports
import pytest
#
# Local Imports
from jobtracker_sync.Sync import conflict_policy
from jobtracker_sync.Sync.models import ConflictDecision, ConflictResolution, OutboxEntry
from jobtracker_sync.sync_api.schemas import PushConflict
#
########################################################################################################################
#
# Tests:

@pytest.fixture
def local_entry():
    return OutboxEntry(id=1, entity_kind="applications", entity_id=4, operation="update",
                       payload={"status": "interview"}, base_version=2, enqueued_at="2024-05-01T10:00:00.000000Z")


@pytest.fixture
def remote_conflict():
    return PushConflict(remote_version=3, remote_payload={"status": "rejected"})


@pytest.mark.parametrize("mode, expected", [
    (ConflictResolution.PREFER_LOCAL, ConflictDecision.ACCEPT_LOCAL),
    (ConflictResolution.PREFER_REMOTE, ConflictDecision.ACCEPT_REMOTE),
    (ConflictResolution.ASK, ConflictDecision.DEFER_TO_USER),
    ("prefer_local", ConflictDecision.ACCEPT_LOCAL),
    ("ask", ConflictDecision.DEFER_TO_USER),
])
def test_resolve_maps_mode_to_decision(mode, expected, local_entry, remote_conflict):
    assert conflict_policy.resolve(mode, local_entry, remote_conflict) == expected


def test_resolve_ignores_payload_contents(local_entry):
    deleted_remotely = PushConflict(remote_version=9, remote_payload=None, remote_deleted=True)
    decision = conflict_policy.resolve(ConflictResolution.PREFER_REMOTE, local_entry, deleted_remotely)
    assert decision == ConflictDecision.ACCEPT_REMOTE


def test_unknown_mode_is_rejected(local_entry, remote_conflict):
    with pytest.raises(ValueError):
        conflict_policy.resolve("newest_wins", local_entry, remote_conflict)


def test_is_user_decision():
    assert conflict_policy.is_user_decision(ConflictDecision.ACCEPT_LOCAL)
    assert conflict_policy.is_user_decision("accept_remote")
    assert not conflict_policy.is_user_decision(ConflictDecision.DEFER_TO_USER)

#
# End of test_conflict_policy.py
########################################################################################################################

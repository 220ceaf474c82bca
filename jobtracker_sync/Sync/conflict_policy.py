# conflict_policy.py
# Description: Maps a detected version conflict to the action the sync processor should take.
#
# Imports
from typing import Union
#
# Local Imports
from .models import ConflictDecision, ConflictResolution, OutboxEntry
from .remote import PushConflict
#
########################################################################################################################
#
# Functions:

_DECISIONS_BY_MODE = {
    ConflictResolution.PREFER_LOCAL: ConflictDecision.ACCEPT_LOCAL,
    ConflictResolution.PREFER_REMOTE: ConflictDecision.ACCEPT_REMOTE,
    ConflictResolution.ASK: ConflictDecision.DEFER_TO_USER,
}


def resolve(mode: Union[str, ConflictResolution], local_entry: OutboxEntry,
            remote_conflict: PushConflict) -> ConflictDecision:
    """
    Decides how to settle a push that the remote rejected as stale.

    Pure function: no I/O and no state.

    Args:
        mode: The user's configured conflict resolution preference.
        local_entry: The outbox entry whose push was rejected.
        remote_conflict: The remote's current version and payload.

    Returns:
        ConflictDecision: ACCEPT_LOCAL to force the local payload onto the remote,
        ACCEPT_REMOTE to adopt the remote record locally, or DEFER_TO_USER to wait for
        an explicit choice.
    """
    return _DECISIONS_BY_MODE[ConflictResolution(mode)]


def is_user_decision(decision: Union[str, ConflictDecision]) -> bool:
    """True when `decision` is a choice a user can make for an entry awaiting one."""
    return ConflictDecision(decision) in (ConflictDecision.ACCEPT_LOCAL, ConflictDecision.ACCEPT_REMOTE)

#
# End of conflict_policy.py
########################################################################################################################

# test_outbox_properties.py
#
# Property-based tests for outbox ordering and draining using Hypothesis.

# Imports
import asyncio

# Third-Party Imports
from hypothesis import HealthCheck, given, settings, strategies as st

# Local Imports
from jobtracker_sync.DB.Local_Store_DB import LocalStoreDatabase
from jobtracker_sync.Sync.engine import SyncEngine
from jobtracker_sync.sync_api.exceptions import APIResponseError
from jobtracker_sync.sync_api.schemas import PushRejected

from sync_fakes import FakeRemote

########################################################################################################################
#
# Hypothesis Setup:

settings.register_profile(
    "sync_friendly",
    deadline=None,
    max_examples=40,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)
settings.load_profile("sync_friendly")


# --- Hypothesis Strategies ---

st_kind = st.sampled_from(["applications", "companies", "contacts"])
st_mutation = st.tuples(st_kind, st.integers(min_value=1, max_value=4), st.integers(min_value=0, max_value=1000))
st_mutations = st.lists(st_mutation, min_size=1, max_size=25)

# None: accept, "transient": 503, "rejected": permanent 4xx
st_outcome = st.sampled_from([None, None, None, "transient", "rejected"])


def make_engine() -> SyncEngine:
    db = LocalStoreDatabase(":memory:", client_id="hypothesis_client")
    return SyncEngine(db, FakeRemote(), push_timeout=1.0, probe_timeout=1.0, retry_base_delay=0.0,
                      pull_remote_changes=False)


def enqueue_all(engine: SyncEngine, mutations) -> dict:
    """Enqueues updates and returns, per entity, the payload sequence in enqueue order."""
    expected = {}
    for seq, (kind, entity_id, value) in enumerate(mutations):
        payload = {"value": value, "seq": seq}
        engine.enqueue(kind, entity_id, "update", payload)
        expected.setdefault((kind, entity_id), []).append(payload)
    return expected


def pushed_sequences(remote: FakeRemote) -> dict:
    pushed = {}
    for request in remote.pushes:
        pushed.setdefault((request.entity_kind, request.entity_id), []).append(request.payload)
    return pushed


# --- Properties ---

@given(mutations=st_mutations)
def test_pushes_follow_enqueue_order_per_entity(mutations):
    engine = make_engine()
    expected = enqueue_all(engine, mutations)

    result = asyncio.run(engine.processor.drain())

    assert result.synced_count == len(mutations)
    assert pushed_sequences(engine.remote) == expected
    assert engine.reporter.pending_count() == 0
    engine.db.close_connection()


@given(mutations=st_mutations, outcomes=st.lists(st_outcome, max_size=40))
def test_no_entity_skips_ahead_of_an_unsent_entry(mutations, outcomes):
    engine = make_engine()
    remote = engine.remote
    for outcome in outcomes:
        if outcome == "transient":
            remote.scripted.append(APIResponseError(503, "Service Unavailable"))
        elif outcome == "rejected":
            remote.scripted.append(PushRejected(reason="invalid", status_code=422))
        else:
            remote.scripted.append(None)
    expected = enqueue_all(engine, mutations)

    async def drain_repeatedly():
        counts = [engine.reporter.pending_count()]
        for _ in range(5):
            await engine.processor.drain(ignore_backoff=True)
            counts.append(engine.reporter.pending_count())
        return counts

    counts = asyncio.run(drain_repeatedly())

    # Every entity's pushes are a prefix-with-repeats of its enqueue sequence: a payload is
    # only ever sent after every earlier payload of that entity has been sent.
    for key, sent in pushed_sequences(remote).items():
        distinct = []
        for payload in sent:
            if not distinct or distinct[-1] != payload:
                distinct.append(payload)
        assert distinct == expected[key][:len(distinct)]
    assert counts == sorted(counts, reverse=True)
    engine.db.close_connection()

#
# End of test_outbox_properties.py
########################################################################################################################

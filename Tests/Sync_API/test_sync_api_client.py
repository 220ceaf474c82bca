# test_sync_api_client.py
# Description: Tests for the httpx sync client against a mocked transport.
#
# Imports
import json
#
# 3rd-party Libraries
import httpx
import pytest
import pytest_asyncio
#
# Local Imports
from jobtracker_sync.sync_api import (
    APIConnectionError,
    APIResponseError,
    APITimeoutError,
    AuthenticationError,
    PushAccepted,
    PushConflict,
    PushRejected,
    PushRequest,
    SyncAPIClient,
)
#
########################################################################################################################
#
# Fixtures and Helper Functions

pytestmark = pytest.mark.asyncio

BASE_URL = "http://sync.test"


class RecordingHandler:
    """MockTransport handler that records requests and replies from a queue of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest_asyncio.fixture
async def make_client():
    clients = []

    def _make(*responses, token=None):
        handler = RecordingHandler(*responses)
        client = SyncAPIClient(BASE_URL, token=token, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client, handler

    yield _make
    for client in clients:
        await client.close()


def push_request(operation="update", entity_id=7, payload=None, base_version=2) -> PushRequest:
    return PushRequest(entity_kind="applications", entity_id=entity_id, operation=operation,
                       payload=payload if payload is not None or operation == "delete" else {"title": "Engineer"},
                       base_version=base_version)

#
# Tests:

class TestPush:
    @pytest.mark.parametrize("operation, method, path", [
        ("create", "POST", "/api/synchronizeJobManager/applications"),
        ("update", "PUT", "/api/synchronizeJobManager/applications/7"),
        ("delete", "DELETE", "/api/synchronizeJobManager/applications/7"),
    ])
    async def test_routes_and_body(self, make_client, operation, method, path):
        client, handler = make_client(httpx.Response(200, json={"new_version": 3}))

        result = await client.push(push_request(operation))

        assert result == PushAccepted(new_version=3)
        sent = handler.requests[0]
        assert sent.method == method
        assert sent.url.path == path
        body = json.loads(sent.content)
        assert body["base_version"] == 2
        assert body["operation"] == operation

    async def test_bearer_token_is_sent(self, make_client):
        client, handler = make_client(httpx.Response(201, json={"new_version": 1}), token="secret")
        await client.push(push_request("create"))
        assert handler.requests[0].headers["Authorization"] == "Bearer secret"

    async def test_conflict_response(self, make_client):
        client, _ = make_client(httpx.Response(409, json={
            "remote_version": 5, "remote_payload": {"title": "Remote"}, "remote_deleted": False}))

        result = await client.push(push_request())

        assert isinstance(result, PushConflict)
        assert result.remote_version == 5
        assert result.remote_payload == {"title": "Remote"}

    async def test_malformed_conflict_is_retryable(self, make_client):
        client, _ = make_client(httpx.Response(409, json={"unexpected": True}))
        with pytest.raises(APIResponseError):
            await client.push(push_request())

    @pytest.mark.parametrize("status", [400, 404, 422])
    async def test_client_errors_are_permanent_rejections(self, make_client, status):
        client, _ = make_client(httpx.Response(status, json={"detail": "title is required"}))

        result = await client.push(push_request())

        assert isinstance(result, PushRejected)
        assert result.status_code == status
        assert result.reason == "title is required"

    async def test_validation_detail_is_flattened(self, make_client):
        client, _ = make_client(httpx.Response(422, json={
            "detail": [{"loc": ["body", "payload", "title"], "msg": "field required"}]}))
        result = await client.push(push_request())
        assert result.reason == "Validation Error: field required for field 'body.payload.title'"

    @pytest.mark.parametrize("status", [500, 502, 503, 408, 429])
    async def test_server_errors_raise_transient(self, make_client, status):
        client, _ = make_client(httpx.Response(status, text="try later"))
        with pytest.raises(APIResponseError) as excinfo:
            await client.push(push_request())
        assert excinfo.value.status_code == status

    async def test_unauthorized_raises(self, make_client):
        client, _ = make_client(httpx.Response(401, json={"detail": "bad token"}))
        with pytest.raises(AuthenticationError, match="bad token"):
            await client.push(push_request())

    async def test_timeout_maps_to_api_timeout(self, make_client):
        client, _ = make_client(httpx.ReadTimeout("slow"))
        with pytest.raises(APITimeoutError):
            await client.push(push_request())

    async def test_connection_error(self, make_client):
        client, _ = make_client(httpx.ConnectError("refused"))
        with pytest.raises(APIConnectionError):
            await client.push(push_request())

    async def test_malformed_success_body(self, make_client):
        client, _ = make_client(httpx.Response(200, text="ok"))
        with pytest.raises(APIResponseError, match="Malformed push response"):
            await client.push(push_request())


class TestHealthAndChanges:
    async def test_health_ok(self, make_client):
        client, handler = make_client(httpx.Response(200, json={"status": "ok"}))
        assert await client.check_health() is True
        assert handler.requests[0].url.path == "/api/synchronizeJobManager/health"

    async def test_health_error_status_is_unreachable(self, make_client):
        client, _ = make_client(httpx.Response(503))
        assert await client.check_health() is False

    async def test_health_connection_failure_raises(self, make_client):
        client, _ = make_client(httpx.ConnectError("refused"))
        with pytest.raises(APIConnectionError):
            await client.check_health()

    async def test_fetch_changes(self, make_client):
        client, handler = make_client(httpx.Response(200, json={"records": [
            {"entity_id": 3, "version": 4, "payload": {"name": "Acme"}},
            {"entity_id": 4, "version": 2, "deleted": True},
        ]}))

        records = await client.fetch_changes("companies", since="2024-05-01T00:00:00.000000Z")

        assert [r.entity_id for r in records] == [3, 4]
        assert records[1].deleted is True
        sent = handler.requests[0]
        assert sent.url.path == "/api/synchronizeJobManager/companies"
        assert sent.url.params["since"] == "2024-05-01T00:00:00.000000Z"

    async def test_fetch_changes_without_since(self, make_client):
        client, handler = make_client(httpx.Response(200, json={"records": []}))
        assert await client.fetch_changes("contacts") == []
        assert "since" not in handler.requests[0].url.params

    async def test_fetch_changes_malformed(self, make_client):
        client, _ = make_client(httpx.Response(200, json={"records": [{"entity_id": "x"}]}))
        with pytest.raises(APIResponseError, match="Malformed changes response"):
            await client.fetch_changes("contacts")


async def test_custom_api_path_and_close():
    handler = RecordingHandler(httpx.Response(200, json={"records": []}))
    client = SyncAPIClient(BASE_URL + "/", api_path="/v2/sync/", transport=httpx.MockTransport(handler))
    await client.fetch_changes("reminders")
    assert handler.requests[0].url.path == "/v2/sync/reminders"
    await client.close()
    await client.close()

#
# End of test_sync_api_client.py
########################################################################################################################

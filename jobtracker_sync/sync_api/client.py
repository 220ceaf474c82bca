# jobtracker_sync/sync_api/client.py
#
#
# Imports
import json
from typing import Optional, Dict, Any, List
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from .schemas import (
    PushRequest, PushAccepted, PushConflict, PushRejected, PushResult,
    RemoteRecord, RemoteChangesResponse,
)
from .exceptions import (
    APIConnectionError, APIRequestError, APIResponseError, APITimeoutError, AuthenticationError,
)
#
########################################################################################################################
#
# Functions:

DEFAULT_API_PATH = "/api/synchronizeJobManager"
RETRYABLE_STATUS_CODES = {408, 425, 429}

_METHOD_BY_OPERATION = {
    "create": "POST",
    "update": "PUT",
    "delete": "DELETE",
}


def _extract_error_detail(response: httpx.Response) -> tuple:
    """Returns (detail message, parsed body or None) for an error response."""
    error_detail = f"HTTP {response.status_code}"
    response_data = None
    try:
        response_data = response.json()
    except ValueError:
        if response.text:
            error_detail = response.text[:500]
        return error_detail, None
    if isinstance(response_data, dict):
        detail = response_data.get("detail") or response_data.get("reason") or response_data.get("error")
        if isinstance(detail, list) and detail and isinstance(detail[0], dict):
            # Pydantic validation error format
            error_detail = (f"Validation Error: {detail[0].get('msg', '')} for field "
                            f"'{'.'.join(map(str, detail[0].get('loc', [])))}'")
        elif isinstance(detail, str):
            error_detail = detail
    return error_detail, response_data


class SyncAPIClient:
    """
    httpx implementation of the remote endpoint the sync processor pushes to.

    Conflicts (409) and permanent rejections (other 4xx) are returned as values;
    everything worth retrying is raised as a `SyncAPIError` subclass.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0,
                 api_path: str = DEFAULT_API_PATH, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.api_path = "/" + api_path.strip('/') if api_path.strip('/') else ""
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _endpoint(self, *parts: Any) -> str:
        suffix = "/".join(str(part).strip('/') for part in parts)
        return f"{self.api_path}/{suffix}" if suffix else self.api_path

    async def _send(self, method: str, endpoint: str, json_body: Optional[Dict[str, Any]] = None,
                    params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"
        try:
            return await client.request(method, endpoint, json=json_body, params=params)
        except httpx.TimeoutException as e:
            raise APITimeoutError(f"Timed out talking to {url}: {e}") from e
        except httpx.RequestError as e: # Covers ConnectError, ReadError, etc.
            raise APIConnectionError(f"Connection error to {url}: {e}") from e

    def _raise_for_retryable(self, response: httpx.Response) -> None:
        if response.status_code == 401:
            error_detail, _ = _extract_error_detail(response)
            raise AuthenticationError(f"Authentication failed: {error_detail}")
        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
            error_detail, response_data = _extract_error_detail(response)
            raise APIResponseError(response.status_code, error_detail, response_data=response_data)

    async def _request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._send(method, endpoint, params=params)
        self._raise_for_retryable(response)
        if response.is_error:
            error_detail, response_data = _extract_error_detail(response)
            raise APIResponseError(response.status_code, error_detail, response_data=response_data)
        try:
            return response.json() if response.content else {}
        except json.JSONDecodeError:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text})

    async def check_health(self) -> bool:
        """Connectivity probe. Raises on transport errors; a non-2xx answer means unreachable."""
        response = await self._send("GET", self._endpoint("health"))
        if response.is_success:
            return True
        logger.info(f"Sync health check returned HTTP {response.status_code}")
        return False

    async def push(self, request: PushRequest) -> PushResult:
        method = _METHOD_BY_OPERATION[request.operation]
        if request.operation == "create":
            endpoint = self._endpoint(request.entity_kind)
        else:
            endpoint = self._endpoint(request.entity_kind, request.entity_id)
        try:
            body = request.model_dump(mode="json")
        except (TypeError, ValueError) as e:
            raise APIRequestError(f"Could not serialize push for {request.entity_kind}/{request.entity_id}: {e}") from e

        response = await self._send(method, endpoint, json_body=body)
        self._raise_for_retryable(response)

        if response.status_code == 409:
            _, response_data = _extract_error_detail(response)
            try:
                return PushConflict(**(response_data or {}))
            except (TypeError, ValidationError) as e:
                raise APIResponseError(409, f"Malformed conflict response: {e}", response_data=response_data)
        if response.is_error:
            error_detail, _ = _extract_error_detail(response)
            return PushRejected(reason=error_detail, status_code=response.status_code)

        try:
            return PushAccepted(**response.json())
        except (ValueError, TypeError, ValidationError) as e:
            raise APIResponseError(response.status_code, f"Malformed push response: {e}",
                                   response_data={"raw_text": response.text})

    async def fetch_changes(self, entity_kind: str, since: Optional[str] = None) -> List[RemoteRecord]:
        params = {"since": since} if since else None
        response_dict = await self._request("GET", self._endpoint(entity_kind), params=params)
        try:
            return RemoteChangesResponse(**response_dict).records
        except (TypeError, ValidationError) as e:
            raise APIResponseError(200, f"Malformed changes response for {entity_kind}: {e}",
                                   response_data=response_dict)

#
# End of jobtracker_sync/sync_api/client.py
########################################################################################################################

# jobtracker_sync/sync_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class SyncAPIError(Exception):
    """Base exception for sync_api errors. Every subclass is a transient push failure."""
    pass

class APIConnectionError(SyncAPIError):
    """Raised for network or connection issues."""
    pass

class APITimeoutError(APIConnectionError):
    """Raised when the remote does not answer within the configured timeout."""
    pass

class APIRequestError(SyncAPIError):
    """Raised for errors in constructing or sending the request (e.g., unserializable data)."""
    pass

class APIResponseError(SyncAPIError):
    """Raised for retryable non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class AuthenticationError(SyncAPIError):
    """Raised for authentication failures."""
    pass

#
# End of jobtracker_sync/sync_api/exceptions.py
########################################################################################################################

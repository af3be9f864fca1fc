import pytest

from cachedfeed import TransportError, TransportResponse


class FakeTransport:
    """Replays canned responses and records every request."""

    supports_auth = True

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, *, auth=None, timeout, follow_redirects, user_agent):
        self.calls.append(
            {"url": url, "auth": auth, "timeout": timeout, "follow": follow_redirects}
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, bytes):
            return TransportResponse(200, response)
        return response


class NoAuthTransport(FakeTransport):
    supports_auth = False


@pytest.fixture
def failing():
    return FakeTransport(TransportError("connection refused"))

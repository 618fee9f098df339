import pytest
from pytest_socket import disable_socket


def pytest_runtest_setup():
    """
    Runs before every test.
    We disable network access. Every attempt to reach Sense or the
    SmartThings hub (HTTP, WebSocket, DNS) will immediately raise a
    SocketBlockedError.
    """
    disable_socket(allow_unix_socket=True)


class FakeClock:
    """Manually advanced wall clock, in seconds"""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()

import pytest

from broker_shared.utils import is_hostport, is_ws_url, resolve_ws_url, ws_url_from_origin


@pytest.mark.parametrize(
    "origin, expected",
    [
        ("https://fund78.com", "wss://fund78.com/ws"),
        ("https://fund78.com:443", "wss://fund78.com:443/ws"),
        ("http://localhost:8080", "ws://localhost:8080/ws"),
        ("http://localhost:8080/dashboard", "ws://localhost:8080/ws"),
        ("localhost:8080", "ws://localhost:8080/ws"),
        ("file:///tmp/page.html", None),
        ("", None),
        (None, None),
    ],
)
def test_ws_url_from_origin(origin, expected):
    assert ws_url_from_origin(origin) == expected


def test_explicit_url_wins_over_origin():
    assert resolve_ws_url("ws://other:9000/ws", "https://fund78.com") == "ws://other:9000/ws"


def test_explicit_non_websocket_url_is_unusable():
    assert resolve_ws_url("http://fund78.com/ws") is None
    assert resolve_ws_url("ws://") is None


def test_nothing_to_resolve():
    assert resolve_ws_url() is None


def test_is_ws_url():
    assert is_ws_url("wss://fund78.com:443/ws")
    assert not is_ws_url("https://fund78.com")
    assert not is_ws_url(None)


def test_is_hostport():
    assert is_hostport("localhost:8080")
    assert is_hostport("192.168.1.5:8080")
    assert not is_hostport("localhost")
    assert not is_hostport(":8080")
    assert not is_hostport("localhost:99999")
    assert not is_hostport("https://fund78.com:443")

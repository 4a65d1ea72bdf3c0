import pytest
from flask import Flask

from placefinder.core import auth
from placefinder.core.errors import ConfigError


def test_gate_requires_secret():
    with pytest.raises(ConfigError):
        auth.TokenGate("")


def test_issued_token_is_authorized():
    gate = auth.TokenGate("secret")
    assert gate.authorize(gate.issue_token()) is True


def test_token_from_another_secret_is_rejected():
    token = auth.TokenGate("other").issue_token()
    assert auth.TokenGate("secret").authorize(token) is False


def test_expired_token_is_rejected(monkeypatch):
    gate = auth.TokenGate("secret", ttl_seconds=10)
    token = gate.issue_token()
    real_loads = gate._serializer.loads
    monkeypatch.setattr(gate._serializer, "loads", lambda value, max_age: real_loads(value, max_age=-1))

    assert gate.authorize(token) is False


@pytest.mark.parametrize(
    "header, expected",
    [
        (None, None),
        ("", None),
        ("Bearer abc", "abc"),
        ("bearer   abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
    ],
)
def test_bearer_credential(header, expected):
    assert auth.bearer_credential(header) == expected


def test_require_token_guards_any_view():
    gate = auth.TokenGate("secret")
    app = Flask(__name__)
    calls = []

    @app.get("/protected")
    @auth.require_token(gate)
    def protected():
        calls.append(True)
        return "ok", 200

    client = app.test_client()
    assert client.get("/protected").status_code == 401
    assert client.get("/protected", headers={"Authorization": "Token x"}).status_code == 401
    assert calls == []
    ok = client.get("/protected", headers={"Authorization": f"Bearer {gate.issue_token()}"})
    assert ok.status_code == 200
    assert calls == [True]

import base64
import json

import jwt

from notes_website.backend.sessions import SessionCodec
from notes_website.backend.users import authenticate, find_by_id, find_by_username

HOUR_MS = 60 * 60 * 1000
SECRET = "test-signing-secret-0123456789abcdef"


class Clock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


def test_issue_then_verify_before_expiry():
    clock = Clock()
    codec = SessionCodec(SECRET, ttl_hours=24, clock=clock)
    user = find_by_username("john")

    session = codec.verify(codec.issue(user))

    assert session is not None
    assert session.user_id == user.id
    assert session.username == "john"
    assert session.role == "user"
    assert session.name == "John Doe"
    assert session.expires_at == clock.now + 24 * HOUR_MS


def test_token_invalid_once_expired():
    clock = Clock()
    codec = SessionCodec(SECRET, ttl_hours=1, clock=clock)
    token = codec.issue(find_by_username("demo"))

    clock.now += HOUR_MS - 1
    assert codec.verify(token) is not None

    # expiresAt == now is already expired
    clock.now += 1
    assert codec.verify(token) is None


def test_token_signed_with_other_secret_is_rejected():
    token = SessionCodec("first-signing-secret-0123456789abcdef").issue(find_by_username("admin"))
    assert SessionCodec("second-signing-secret-0123456789abcdef").verify(token) is None


def test_unsigned_base64_session_is_rejected():
    forged = base64.b64encode(json.dumps({
        "userId": "1", "username": "admin", "role": "admin",
        "name": "Administrator", "expiresAt": 99999999999999,
    }).encode()).decode()
    assert SessionCodec(SECRET).verify(forged) is None


def test_malformed_tokens_fail_closed():
    codec = SessionCodec(SECRET)
    assert codec.verify(None) is None
    assert codec.verify("") is None
    assert codec.verify("not-a-token") is None

    missing_fields = jwt.encode({"userId": "1"}, SECRET, algorithm="HS256")
    assert codec.verify(missing_fields) is None

    wrong_type = jwt.encode({"userId": "1", "username": "admin", "role": "admin",
                             "name": "Administrator", "expiresAt": "tomorrow"}, SECRET, algorithm="HS256")
    assert codec.verify(wrong_type) is None


def test_user_for_resolves_directory_user():
    codec = SessionCodec(SECRET)
    token = codec.issue(find_by_username("sarah"))
    assert codec.user_for(token) == find_by_id("3")
    assert codec.user_for("garbage") is None


def test_authenticate_is_case_insensitive_on_username_only():
    assert authenticate("DEMO", "demo123").id == "4"
    assert authenticate("demo", "DEMO123") is None
    assert authenticate("nobody", "demo123") is None
    assert authenticate("demo", None) is None


def test_directory_never_holds_plaintext_passwords():
    user = find_by_username("admin")
    assert user.password_hash != "admin123"
    assert len(user.password_hash) == 64

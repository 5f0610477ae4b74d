import jwt
import pytest

from scout_auth import AccessPolicy, CreatorOnlyPolicy, Identity
from scout_errors import (
    DuplicateUser,
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidRegistrationCode,
)

from conftest import REGISTRATION_CODE


@pytest.fixture()
def auth(ctx):
    return ctx.auth


def test_register_returns_token_for_created_user(auth, ctx):
    session = auth.register("coach@example.com", "password123", REGISTRATION_CODE)

    stored = ctx.store.get_user_by_email("coach@example.com")
    identity = auth.verify_token(session["token"])
    assert identity.user_id == stored["id"] == session["user"]["id"]
    assert identity.email == "coach@example.com"
    assert session["user"] == {"id": stored["id"], "email": "coach@example.com", "role": "coach"}


def test_password_is_stored_hashed(auth, ctx):
    auth.register("coach@example.com", "password123", REGISTRATION_CODE)

    stored = ctx.store.get_user_by_email("coach@example.com")
    assert stored["passwordHash"] != "password123"
    assert stored["passwordHash"].startswith("$2")


def test_register_with_wrong_code_fails(auth, ctx):
    with pytest.raises(InvalidRegistrationCode):
        auth.register("coach@example.com", "password123", "WRONG")
    assert ctx.store.get_user_by_email("coach@example.com") is None


def test_register_duplicate_email_fails(auth):
    auth.register("coach@example.com", "password123", REGISTRATION_CODE)
    with pytest.raises(DuplicateUser):
        auth.register("coach@example.com", "another-pass", REGISTRATION_CODE)


def test_emails_are_normalized(auth):
    auth.register("  Coach@Example.COM ", "password123", REGISTRATION_CODE)

    with pytest.raises(DuplicateUser):
        auth.register("coach@example.com", "password123", REGISTRATION_CODE)
    session = auth.login("COACH@example.com", "password123")
    assert session["user"]["email"] == "coach@example.com"


def test_login_returns_token_for_stored_user(auth, ctx):
    auth.register("coach@example.com", "password123", REGISTRATION_CODE)

    session = auth.login("coach@example.com", "password123")

    stored = ctx.store.get_user_by_email("coach@example.com")
    assert auth.verify_token(session["token"]).user_id == stored["id"]


def test_login_failures_are_indistinguishable(auth):
    auth.register("coach@example.com", "password123", REGISTRATION_CODE)

    with pytest.raises(InvalidCredentials) as wrong_password:
        auth.login("coach@example.com", "not-the-password")
    with pytest.raises(InvalidCredentials) as unknown_user:
        auth.login("nobody@example.com", "password123")

    assert wrong_password.value.to_dict() == unknown_user.value.to_dict()
    assert wrong_password.value.status_code == unknown_user.value.status_code


def test_token_expires_after_24_hours(auth, clock):
    token = auth.register("coach@example.com", "password123", REGISTRATION_CODE)["token"]

    clock.advance(hours=23, minutes=59)
    auth.verify_token(token)

    clock.advance(minutes=2)
    with pytest.raises(InvalidOrExpiredToken):
        auth.verify_token(token)


def test_token_signed_with_other_secret_is_rejected(auth):
    forged = jwt.encode({"userId": "x", "email": "x@example.com", "exp": 4102444800}, "other", algorithm="HS256")
    with pytest.raises(InvalidOrExpiredToken):
        auth.verify_token(forged)


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_missing_or_garbage_token_is_rejected(auth, token):
    with pytest.raises(InvalidOrExpiredToken):
        auth.verify_token(token)


def test_token_outlives_the_user_record(auth, ctx):
    token = auth.register("coach@example.com", "password123", REGISTRATION_CODE)["token"]
    with ctx.store._connect() as conn:
        conn.execute("DELETE FROM users")

    assert auth.verify_token(token).email == "coach@example.com"


# ── Access policy ────────────────────────────────────────────

ALICE = Identity(user_id="alice", email="alice@example.com")
BOB = Identity(user_id="bob", email="bob@example.com")


def test_default_policy_allows_any_authenticated_user():
    policy = AccessPolicy()
    team = {"createdBy": {"id": "alice"}}

    assert policy.decide(BOB, "team:delete", team).allowed
    policy.require(BOB, "report:update", {"scoutId": "alice"})


def test_creator_policy_restricts_team_changes_to_creator():
    policy = CreatorOnlyPolicy()
    team = {"createdBy": {"id": "alice", "email": "alice@example.com"}}

    assert policy.decide(ALICE, "team:update", team).allowed
    assert not policy.decide(BOB, "team:delete", team).allowed
    assert policy.decide(BOB, "team:read", team).allowed


def test_creator_policy_restricts_report_changes_to_scout():
    policy = CreatorOnlyPolicy()
    report = {"scoutId": "alice"}

    policy.require(ALICE, "report:upload", report)
    with pytest.raises(Forbidden):
        policy.require(BOB, "report:update", report)

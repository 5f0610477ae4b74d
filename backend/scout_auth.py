"""
Authentication and access policy.

AuthService handles registration, login and bearer tokens (HS256 JWTs
carrying userId and email). Token verification never goes back to the user
table, so a token stays valid until it expires.

Access policies decide, per operation, whether an authenticated identity may
act on a resource. Routes only ever ask the policy; swapping the policy is
how ownership rules get tightened.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import jwt
from passlib.context import CryptContext

from scout_errors import (
    DuplicateUser,
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidRegistrationCode,
    ValidationError,
)
from scout_store import DomainStore, utcnow

logger = logging.getLogger("scoutpro.auth")


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str


def public_user(user: dict) -> dict:
    return {"id": user["id"], "email": user["email"], "role": user["role"]}


class AuthService:
    def __init__(
        self,
        store: DomainStore,
        jwt_secret: str,
        registration_code: str,
        jwt_algorithm: str = "HS256",
        expiry_hours: int = 24,
        bcrypt_rounds: int = 10,
        normalize_emails: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.jwt_secret = jwt_secret
        self.registration_code = registration_code
        self.jwt_algorithm = jwt_algorithm
        self.expiry_hours = expiry_hours
        self.normalize_emails = normalize_emails
        self.clock = clock
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=bcrypt_rounds)

    def normalize_email(self, email: str) -> str:
        email = (email or "").strip()
        if not email:
            raise ValidationError("Email is required")
        return email.lower() if self.normalize_emails else email

    # ── Tokens ───────────────────────────────────────────────

    def create_token(self, user: dict) -> str:
        now = self.clock()
        payload = {
            "userId": user["id"],
            "email": user["email"],
            "iat": now,
            "exp": now + timedelta(hours=self.expiry_hours),
        }
        return jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)

    def verify_token(self, token: Optional[str]) -> Identity:
        if not token:
            raise InvalidOrExpiredToken("Access token required")
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError:
            raise InvalidOrExpiredToken("Invalid token")
        # expiry is checked here so the injected clock governs it
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self.clock().timestamp():
            raise InvalidOrExpiredToken("Token expired")
        if not payload.get("userId"):
            raise InvalidOrExpiredToken("Invalid token")
        return Identity(user_id=payload["userId"], email=payload.get("email", ""))

    def _session(self, user: dict) -> dict:
        return {"token": self.create_token(user), "user": public_user(user)}

    # ── Register / login ─────────────────────────────────────

    def register(self, email: str, password: str, registration_code: str) -> dict:
        if not hmac.compare_digest((registration_code or "").encode(), self.registration_code.encode()):
            raise InvalidRegistrationCode()
        email = self.normalize_email(email)
        if self.store.get_user_by_email(email):
            raise DuplicateUser()
        user = self.store.create_user(email, self.pwd_context.hash(password))
        logger.info("User registered: %s", email)
        return self._session(user)

    def login(self, email: str, password: str) -> dict:
        user = self.store.get_user_by_email(self.normalize_email(email))
        if not user or not self.pwd_context.verify(password, user["passwordHash"]):
            raise InvalidCredentials()
        logger.info("User logged in: %s", user["email"])
        return self._session(user)


# ============================================================
# ACCESS POLICY
# ============================================================

@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""


class AccessPolicy:
    """Base policy: every authenticated identity may do everything."""

    name = "authenticated"

    def decide(self, identity: Identity, action: str, resource: Optional[dict] = None) -> Decision:
        return Decision(True)

    def require(self, identity: Identity, action: str, resource: Optional[dict] = None) -> None:
        decision = self.decide(identity, action, resource)
        if not decision.allowed:
            logger.info("Denied %s for %s: %s", action, identity.email, decision.reason)
            raise Forbidden(decision.reason or "Not allowed")


class CreatorOnlyPolicy(AccessPolicy):
    """Teams are changed only by their creator, reports only by their scout."""

    name = "creator"

    def decide(self, identity: Identity, action: str, resource: Optional[dict] = None) -> Decision:
        if resource is None:
            return Decision(True)
        if action in ("team:update", "team:delete"):
            owner = (resource.get("createdBy") or {}).get("id")
            if owner != identity.user_id:
                return Decision(False, "Only the team's creator may change it")
        elif action in ("report:update", "report:delete", "report:upload"):
            if resource.get("scoutId") != identity.user_id:
                return Decision(False, "Only the report's scout may change it")
        return Decision(True)


POLICIES = {
    AccessPolicy.name: AccessPolicy,
    CreatorOnlyPolicy.name: CreatorOnlyPolicy,
}

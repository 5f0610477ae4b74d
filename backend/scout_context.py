"""
Process-scoped application context.

One AppContext is built when the API starts and dropped when it stops; every
request handler receives it through a FastAPI dependency instead of reaching
for module globals.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from rate_limits import RateGuard
from scout_auth import POLICIES, AccessPolicy, AuthService, Identity
from scout_config import Settings
from scout_store import DomainStore, utcnow
from spray_charts import FileStore, UploadHandler

logger = logging.getLogger("scoutpro.context")


@dataclass
class AppContext:
    settings: Settings
    store: DomainStore
    auth: AuthService
    files: FileStore
    uploads: UploadHandler
    guard: RateGuard
    policy: AccessPolicy
    clock: Callable[[], datetime] = utcnow
    started_at: float = field(default_factory=time.monotonic)

    def start(self) -> None:
        self.settings.validate_at_startup()
        os.makedirs(self.settings.data_dir, exist_ok=True)
        db_dir = os.path.dirname(os.path.abspath(self.settings.db_file))
        os.makedirs(db_dir, exist_ok=True)
        self.files.ensure_dir()
        self.store.init_db()
        self.started_at = time.monotonic()
        logger.info(
            "Scout Pro context started (env=%s, policy=%s)", self.settings.environment, self.policy.name
        )

    def close(self) -> None:
        for limiter in self.guard.limiters.values():
            limiter.reset()
        logger.info("Scout Pro context closed")

    def uptime(self) -> float:
        return round(time.monotonic() - self.started_at, 1)

    def authorize(self, identity: Identity, action: str, resource: Optional[dict] = None) -> None:
        self.policy.require(identity, action, resource)


def build_context(settings: Settings, clock: Callable[[], datetime] = utcnow) -> AppContext:
    store = DomainStore(settings.db_file, enforce_references=settings.enforce_references, clock=clock)
    auth = AuthService(
        store,
        jwt_secret=settings.effective_jwt_secret(),
        registration_code=settings.effective_registration_code(),
        jwt_algorithm=settings.jwt_algorithm,
        expiry_hours=settings.jwt_expiry_hours,
        bcrypt_rounds=settings.bcrypt_rounds,
        normalize_emails=settings.normalize_emails,
        clock=clock,
    )
    files = FileStore(settings.upload_dir, settings.upload_url_prefix, settings.upload_filename_prefix)
    return AppContext(
        settings=settings,
        store=store,
        auth=auth,
        files=files,
        uploads=UploadHandler(store, files, max_bytes=settings.max_upload_bytes),
        guard=RateGuard(enabled=settings.rate_limits_enabled, clock=lambda: clock().timestamp()),
        policy=POLICIES[settings.access_policy](),
        clock=clock,
    )

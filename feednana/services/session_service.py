# services/session_service.py
import logging
import random
import string
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis
from jose import JWTError, jwt
from passlib.context import CryptContext

from feednana.config import Settings, get_settings
from feednana.models.upload_models import AnonIdentity

logger = logging.getLogger(__name__)

ANON_ID_CHARS = string.ascii_uppercase + string.ascii_lowercase + string.digits
JWT_ALGORITHM = "HS256"
JWT_EXPIRY = timedelta(days=30)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def generate_anon_id() -> str:
    return "".join(random.choice(ANON_ID_CHARS) for _ in range(8))


def generate_random_color() -> str:
    r, g, b = (random.randint(0, 255) for _ in range(3))
    return f"rgb({r}, {g}, {b})"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def sign_jwt(user_id: int, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload = {"userId": user_id, "iat": now, "exp": now + JWT_EXPIRY}
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def verify_jwt(token: str, settings: Optional[Settings] = None) -> Optional[int]:
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    return payload.get("userId")


class SessionService:
    """Per-browser anonymous identity, kept in Redis under the anon session cookie."""

    def __init__(self, redis_client: redis.Redis, settings: Optional[Settings] = None):
        self.redis_client = redis_client
        self.settings = settings or get_settings()
        self.session_ttl = timedelta(hours=self.settings.session_ttl_hours)

    @staticmethod
    def new_session_id() -> str:
        return str(uuid.uuid4())

    def ensure_anon_identity(self, session_id: str) -> AnonIdentity:
        """Return the identity bound to ``session_id``, minting one on first use."""
        stored = self.redis_client.get(f"anon_session:{session_id}")
        if stored:
            return AnonIdentity.model_validate_json(stored)

        identity = AnonIdentity(
            anon_id=generate_anon_id(),
            anon_text_color=generate_random_color(),
            anon_text_background=generate_random_color(),
        )
        self.redis_client.setex(
            f"anon_session:{session_id}",
            int(self.session_ttl.total_seconds()),
            identity.model_dump_json(),
        )
        logger.debug(f"Minted anon identity {identity.anon_id}")
        return identity

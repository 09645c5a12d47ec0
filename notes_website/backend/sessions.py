import logging
from typing import Callable, Optional

import jwt

from .domain import Session, User
from .users import find_by_id
from .utils import now_ms

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
_REQUIRED = {"userId": str, "username": str, "role": str, "name": str, "expiresAt": int}


class SessionCodec:
    """Turns a user into a signed bearer token and back.

    Nothing is stored server-side: a token is valid iff its signature checks out
    and ``expiresAt`` (epoch milliseconds) lies in the future.
    """

    def __init__(self, secret: str, ttl_hours: int = 24, clock: Callable[[], int] = now_ms):
        self.secret = secret
        self.ttl_ms = int(ttl_hours) * 60 * 60 * 1000
        self.clock = clock

    def issue(self, user: User) -> str:
        payload = {
            "userId": user.id,
            "username": user.username,
            "role": user.role,
            "name": user.name,
            "expiresAt": self.clock() + self.ttl_ms,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALG)

    def verify(self, token: Optional[str]) -> Optional[Session]:
        if not token or not isinstance(token, str):
            return None
        try:
            data = jwt.decode(token, self.secret, algorithms=[JWT_ALG])
        except jwt.PyJWTError as e:
            logger.debug("Rejected session token: %s", e)
            return None

        for field, kind in _REQUIRED.items():
            value = data.get(field)
            # bool is an int subclass
            if not isinstance(value, kind) or isinstance(value, bool):
                return None

        if data["expiresAt"] <= self.clock():
            return None

        return Session(
            user_id=data["userId"],
            username=data["username"],
            role=data["role"],
            name=data["name"],
            expires_at=data["expiresAt"],
        )

    def user_for(self, token: Optional[str]) -> Optional[User]:
        session = self.verify(token)
        if not session:
            return None
        return find_by_id(session.user_id)

from typing import Optional, Tuple

from .domain import User
from .utils import hash_password, verify_password

# Fixed at process start; there is no registration.
USERS: Tuple[User, ...] = (
    User("1", "admin", hash_password("admin123"), "admin", "Administrator"),
    User("2", "john", hash_password("john123"), "user", "John Doe"),
    User("3", "sarah", hash_password("sarah123"), "user", "Sarah Wilson"),
    User("4", "demo", hash_password("demo123"), "demo", "Demo User"),
)


def find_by_username(username: str) -> Optional[User]:
    """Case-insensitive username lookup."""
    wanted = (username or "").lower()
    for user in USERS:
        if user.username.lower() == wanted:
            return user
    return None


def find_by_id(user_id: str) -> Optional[User]:
    for user in USERS:
        if user.id == user_id:
            return user
    return None


def authenticate(username: str, password: str) -> Optional[User]:
    user = find_by_username(username)
    if user and verify_password(password, user.password_hash):
        return user
    return None

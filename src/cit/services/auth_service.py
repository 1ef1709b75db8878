from __future__ import annotations

import re

from cit.domain.errors import AuthorizationError
from cit.domain.models import User


ROLES: frozenset[str] = frozenset({"admin", "staff", "viewer"})

PERMISSIONS: dict[str, set[str]] = {
    "record_movement": {"admin", "staff"},
    "adjust_inventory": {"admin", "staff"},
    "manage_orders": {"admin", "staff"},
    "manage_catalog": {"admin"},
    "import_excel": {"admin", "staff"},
    "export_report": {"admin", "staff", "viewer"},
    "reset_inventory": {"admin"},
    "clear_log": {"admin"},
    "manage_users": {"admin"},
}

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.@-]{2,64}$")


class AuthService:
    """Actor registry and capability checks.

    Login is handled outside this project; callers resolve an actor by
    username and pass the User to every mutating operation.
    """

    def __init__(self, repo):
        self.repo = repo

    def list_users(self) -> list[User]:
        return self.repo.list_users()

    def get_actor(self, username: str) -> User:
        username_clean = (username or "").strip()
        if not username_clean:
            raise AuthorizationError("Username is required.")
        user = self.repo.get_user_by_username(username_clean)
        if not user:
            raise AuthorizationError(f"Unknown or inactive user '{username_clean}'.")
        return user

    @staticmethod
    def can(user: User | None, action: str) -> bool:
        if user is None or not user.active:
            return False
        allowed_roles = PERMISSIONS.get(action)
        if not allowed_roles:
            return False
        return user.role in allowed_roles

    def require_action(self, user: User | None, action: str) -> None:
        if not self.can(user, action):
            role = user.role if user else "anonymous"
            raise AuthorizationError(f"Role '{role}' is not allowed to perform '{action}'.")

    def create_user(self, actor: User, username: str, role: str) -> int:
        self.require_action(actor, "manage_users")

        user = (username or "").strip()
        target_role = (role or "").strip().lower()
        if not _USERNAME_RE.match(user):
            raise AuthorizationError("Username must be 2-64 characters (letters, digits, _ . @ -).")
        if target_role not in ROLES:
            raise AuthorizationError(f"Unknown role '{role}'.")

        try:
            return self.repo.create_user(user, target_role)
        except Exception as exc:
            raise AuthorizationError(f"Could not create user '{user}': {exc}") from exc

    def deactivate_user(self, actor: User, user_id: int) -> None:
        self.require_action(actor, "manage_users")
        if int(user_id) == actor.id:
            raise AuthorizationError("You can not deactivate your own user.")
        if not self.repo.deactivate_user(int(user_id)):
            raise AuthorizationError("User not found.")

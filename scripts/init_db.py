import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, or_

from app.absensi.constants import ROLE_SUPERADMIN
from app.absensi.models import User
from app.absensi.modules.classes.service import ensure_default_categories
from app.absensi.rbac import ensure_roles_and_permissions
from app.absensi.security import hash_password
from scripts._db_utils import resolve_db_url, script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions, roles, class-master categories and the first superadmin
    in an idempotent way. Does NOT overwrite an existing account's password.
    """
    admin_username = (os.environ.get("ADMIN_USERNAME") or "superadmin").strip().lower()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "superadmin@absensi.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = resolve_db_url(database_url)

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        roles = ensure_roles_and_permissions(s)
        ensure_default_categories(s)

        user = (
            s.query(User)
            .filter(or_(func.lower(User.username) == admin_username, func.lower(User.email) == admin_email))
            .one_or_none()
        )
        if not user:
            user = User(
                username=admin_username,
                email=admin_email,
                full_name="Superadmin",
                password_hash=hash_password(admin_password),
                is_active=True,
            )
            s.add(user)
        if roles[ROLE_SUPERADMIN] not in user.roles:
            user.roles.append(roles[ROLE_SUPERADMIN])

    print("Initialized database (seed_only).")
    print(f"Superadmin username: {admin_username}")
    print("Superadmin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()

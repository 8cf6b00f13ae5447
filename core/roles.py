"""
core/roles.py -- Role derivation for signed-in principals.

Role is never stored. It is derived on every request from the principal's
email through a fixed two-entry table, and an email missing from the table
has no role at all. Callers treat a None result as "terminate the session".
"""

from typing import Optional

from core.models import Role

# Privileges shown on the access management page.
PRIVILEGES: dict[Role, list[str]] = {
    Role.superuser: ["Read Instances", "Create Instances", "Upload Data", "Manage Access"],
    Role.normaluser: ["Read Instances"],
}


def derive_role(email: Optional[str], allowed_users: dict[str, str]) -> Optional[Role]:
    """Return the Role for email, or None when the email is not allow-listed.

    Matching is exact; the table is the single source of truth.
    """
    if not email:
        return None
    role_name = allowed_users.get(email)
    if role_name is None:
        return None
    return Role(role_name)


def privileges_for(role: Role) -> list[str]:
    return list(PRIVILEGES[role])


def is_superuser(role: Optional[Role]) -> bool:
    return role is Role.superuser

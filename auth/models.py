"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work.

Note there is no role field. Role is derived from the email on every
request (core/roles.derive_role) and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A principal with a local password.

    Accounts may exist for emails outside the allow-list; such users can
    authenticate against the store but are signed out immediately because
    they have no role.
    """

    email: str
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    is_active: bool = True
    last_login: str | None = None

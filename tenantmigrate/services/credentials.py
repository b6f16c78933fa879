from __future__ import annotations

import secrets
import string

from tenantmigrate.core.config import get_settings


# Alphanumeric only: secrets are embedded in CREATE ROLE statements and connection URLs.
SECRET_ALPHABET = string.ascii_letters + string.digits
MIN_SECRET_LENGTH = 20


def generate_secret(length: int | None = None) -> str:
    """Return a fresh principal password drawn from the OS CSPRNG."""
    if length is None:
        length = get_settings().tenant_password_length
    if length < MIN_SECRET_LENGTH:
        raise ValueError(f"secret length must be at least {MIN_SECRET_LENGTH}, got {length}")
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))

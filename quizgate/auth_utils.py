"""Authentication utilities: password hashing and token generation."""

import secrets

from passlib.context import CryptContext

# Pin the "2b" ident so hashes stay verifiable across bcrypt releases
PWD_CONTEXT = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=12,
)


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password for storage."""
    return PWD_CONTEXT.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plaintext password against its hash."""
    return PWD_CONTEXT.verify(plain_password, password_hash)


def create_slug_suffix() -> str:
    """Generate a short random token used to keep quiz slugs unique."""
    return secrets.token_hex(3)

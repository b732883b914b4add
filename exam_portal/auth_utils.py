"""Password hashing for user accounts."""

from passlib.context import CryptContext

# bcrypt "2b" ident keeps hashes compatible with bcrypt 4.x
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
    try:
        return PWD_CONTEXT.verify(plain_password, password_hash)
    except ValueError:
        # Unrecognised or malformed hash
        return False

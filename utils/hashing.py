import secrets
from passlib.context import CryptContext

bcrypt_context = CryptContext(schemes=['bcrypt'], deprecated='auto')

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _truncate(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def get_password_hash(password: str) -> str:
    return bcrypt_context.hash(_truncate(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt_context.verify(_truncate(plain_password), hashed_password)


def get_unusable_password_hash() -> str:
    """Hash of a random password nobody knows, for accounts created by federated sign-in."""
    return get_password_hash(secrets.token_urlsafe(48))

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError

ph = PasswordHasher()

# Verified against on the unknown-email login path so both failures cost the same.
_DUMMY_HASH = ph.hash("nunyalearn-dummy-password")


def hash_password(password: str) -> str:
    """argon2id hash of ``password``."""
    return ph.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHash):
        return False


def burn_verify(password: str) -> None:
    verify_password(_DUMMY_HASH, password)


def needs_rehash(password_hash: str) -> bool:
    return ph.check_needs_rehash(password_hash)

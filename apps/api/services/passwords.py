"""bcrypt password hashing."""

import secrets

import bcrypt


def hash_password(plaintext: str) -> str:
    return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(plaintext: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def unusable_password_hash() -> str:
    """Hash of a random secret nobody knows, for accounts that never log in with a password."""
    return hash_password(secrets.token_hex(32))

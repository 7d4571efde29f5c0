"""Security helpers."""

import hashlib
import secrets
from secrets import token_urlsafe

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

password_hasher = PasswordHasher()

# Verified against when the username is unknown so both paths cost one argon2 run.
_DUMMY_HASH = password_hasher.hash(token_urlsafe(16))


def generate_session_token() -> str:
    """Generate an opaque session token.

    Returns
    -------
    str
        URL-safe token carrying 256 bits of entropy.
    """
    return token_urlsafe(32)


def generate_csrf_token() -> str:
    """Generate a CSRF token.

    Returns
    -------
    str
        URL-safe random token.
    """
    return token_urlsafe(32)


def lookup_hash(token: str) -> str:
    """Compute a fast, non-secret hash for DB lookup.

    Parameters
    ----------
    token : str
        Raw token.

    Returns
    -------
    str
        Hex-encoded SHA-256 digest.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def hash_password(password: str) -> str:
    """Hash a password for storage.

    Parameters
    ----------
    password : str
        Plaintext password.

    Returns
    -------
    str
        Encoded argon2id hash tagged with its parameters.
    """
    return password_hasher.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """Verify a password against its stored hash.

    Parameters
    ----------
    password : str
        Plaintext password.
    password_hash : str | None
        Stored hash; ``None`` runs a dummy verification and fails.

    Returns
    -------
    bool
        Whether the password matches.
    """
    try:
        if password_hash is None:
            password_hasher.verify(_DUMMY_HASH, password)
            return False
        return password_hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_rehash(password_hash: str) -> bool:
    """Return whether a stored hash uses outdated parameters."""
    return password_hasher.check_needs_rehash(password_hash)


def tokens_match(expected: str, provided: str | None) -> bool:
    """Compare two tokens in constant time.

    Parameters
    ----------
    expected : str
        Token held server-side.
    provided : str | None
        Token presented by the client.

    Returns
    -------
    bool
        Whether the tokens are equal.
    """
    if not provided:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))

"""
auth/hashing.py -- One-way hashing for passwords and refresh tokens.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Every hash embeds its own random
  salt and cost factor, so two hashes of the same secret differ and old hashes
  keep verifying after the configured cost changes.

  bcrypt only reads the first 72 bytes of its input, and bcrypt 4.1+ refuses
  longer inputs outright. Refresh tokens are JWTs of several hundred bytes
  whose first 72 bytes (header + start of the payload) are identical for every
  token of the same user. Hashing them raw would make every past refresh token
  verify against the current hash. The secret is therefore digested with
  SHA-256 first and the base64 digest (44 bytes, no NUL bytes) is what bcrypt
  sees.

  make_dummy_hash() takes the cost factor so the dummy matches the configured
  bcrypt_rounds.

  verify_secret() never raises. A malformed or empty stored hash is a
  mismatch, not an error.
"""

from __future__ import annotations

import base64
import hashlib

import bcrypt

DEFAULT_ROUNDS = 10


def _digest(secret: str) -> bytes:
    return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def hash_secret(secret: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of secret at the given cost factor."""
    return bcrypt.hashpw(_digest(secret), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_secret(secret: str, hashed: str) -> bool:
    """Return True if secret matches hashed. Constant-time; False on any malformed input."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_digest(secret), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


_DUMMY_SECRET = "authkeeper_timing_dummy"


def make_dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a throwaway hash for timing equalization [C1].

    login() verifies against it when the username does not exist, so response
    time does not reveal which usernames are taken. It must be built at the
    same cost as real password hashes or the two paths take different times.
    """
    return hash_secret(_DUMMY_SECRET, rounds=rounds)

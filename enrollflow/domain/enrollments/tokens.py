"""Capability tokens for enrollment links: only the SHA-256 hash is persisted."""

import hashlib
import secrets
from typing import NamedTuple

TOKEN_BYTES = 32


class IssuedToken(NamedTuple):
    raw: str
    hash: str
    last4: str


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def issue_token(num_bytes: int = TOKEN_BYTES) -> IssuedToken:
    raw = secrets.token_hex(num_bytes)
    return IssuedToken(raw=raw, hash=hash_token(raw), last4=raw[-4:])

from __future__ import annotations

from cryptography.hazmat.primitives import hashes

DIGEST_ALGORITHM = "sha-256"


def hash_secret(secret: str) -> str:
    """
    One-way digest of a raw password, lowercase hex.

    The session only ever receives this digest plus DIGEST_ALGORITHM.
    """
    if not secret:
        raise ValueError("secret must not be empty")
    digest = hashes.Hash(hashes.SHA256())
    digest.update(secret.encode("utf-8"))
    return digest.finalize().hex().lower()

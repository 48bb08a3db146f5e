"""Opaque, integrity-checked pagination cursors using python-jose."""

import hashlib

from jose import JWTError, jwt

from core.errors import InvalidCursorError


def query_scope(query: str) -> str:
    """Cursor scope for a search query, so cursors cannot cross queries."""
    normalized = " ".join(query.lower().split())
    return "search:" + hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


class CursorCodec:
    """Encodes (revision, ordinal) pairs as signed compact tokens.

    Tokens are HMAC-signed JWS strings carrying the minting index's id, so a
    token from another deployment (different secret) or from another index
    sharing the secret is rejected. Encoding is deterministic: the same
    inputs always produce the same token.
    """

    def __init__(self, secret: str, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("cursor secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm

    def encode(self, revision: int, ordinal: int, scope: str = "", index_id: str = "") -> str:
        if revision < 0 or ordinal < 0:
            raise ValueError("revision and ordinal must be non-negative")
        claims = {"rev": revision, "ord": ordinal, "scp": scope, "idx": index_id}
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode(self, token: str, scope: str = "", index_id: str = "") -> tuple[int, int]:
        """Return ``(revision, ordinal)``.

        Raises InvalidCursorError when the token is malformed, its signature
        does not verify, or it was minted for a different scope or index.
        """
        if not isinstance(token, str) or not token:
            raise InvalidCursorError("Invalid cursor")
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            raise InvalidCursorError("Invalid cursor") from e

        revision = claims.get("rev")
        ordinal = claims.get("ord")
        for value in (revision, ordinal):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise InvalidCursorError("Invalid cursor content")
        if claims.get("scp", "") != scope:
            raise InvalidCursorError("Cursor does not belong to this listing")
        if claims.get("idx", "") != index_id:
            raise InvalidCursorError("Cursor was issued by a different index")
        return revision, ordinal

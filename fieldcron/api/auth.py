"""Bearer token verification (tokens are issued by the account service)."""

from __future__ import annotations

import jwt
from fastapi import HTTPException


def decode_token(token: str, secret: str, algorithm: str) -> str:
    """Decode a JWT token and return user_id. Raises on invalid/expired."""
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
        user_id: str | None = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid token payload")
        return user_id
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.schemas import CurrentUser

# auto_error=False so a missing header is answered with 401 instead of 403
bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict:
    """Verify an identity-provider token and return its claims."""
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )


# Decode the bearer token and see who is the user
async def get_current_user(
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)
    ],
) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise credentials_exception

    if not settings.SECRET_KEY:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Token verification is not configured",
        )

    try:
        payload = decode_access_token(credentials.credentials)
    # Expired, tampered, wrong audience...
    except jwt.PyJWTError:
        credentials_exception.detail = "Invalid token"
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None:
        credentials_exception.detail = "Invalid token"
        raise credentials_exception

    return CurrentUser(id=str(user_id), email=payload.get("email"), role=payload.get("role"))

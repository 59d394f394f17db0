import logging
import os
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

API_KEY_HEADER_NAME = "X-API-Key"

TOKEN_SALT = "scholarhub-identity"

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name=API_KEY_HEADER_NAME, auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


def get_api_key() -> str | None:
    return os.environ.get("API_KEY")


async def verify_api_key(
    api_key: Annotated[str | None, Depends(api_key_header)],
) -> str | None:
    expected_key = get_api_key()
    if not expected_key or api_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return api_key


# ---------------------------------------------------------------------------
# End-user identity
# ---------------------------------------------------------------------------

class SignedTokenVerifier:
    """Turns a bearer token signed by the web app into a trusted user id."""

    def __init__(self, secret: str, max_age_seconds: int = 86400):
        self._serializer = URLSafeTimedSerializer(secret, salt=TOKEN_SALT)
        self._max_age = max_age_seconds

    def issue(self, user_id: str) -> str:
        return self._serializer.dumps({"sub": user_id})

    def verify(self, token: str) -> str | None:
        try:
            data = self._serializer.loads(token, max_age=self._max_age)
        except SignatureExpired:
            logger.info("Rejected expired identity token")
            return None
        except BadSignature:
            return None
        user_id = data.get("sub") if isinstance(data, dict) else None
        if not isinstance(user_id, str) or not user_id:
            return None
        return user_id


async def get_current_user_id(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    verifier: SignedTokenVerifier = request.app.state.services.identity
    user_id = verifier.verify(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]

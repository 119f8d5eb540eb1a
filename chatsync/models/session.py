"""
Authenticated session identity.

The access token is issued by an external identity provider; the client only
reads its claims to learn who the viewing user is. Signature verification is
the server's responsibility.
"""

from datetime import datetime
from typing import Literal, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, Field

from chatsync.core.exceptions import AuthenticationError
from chatsync.utils.datetime_utils import UTC, now_utc


class SessionCredentials(BaseModel):
    """Access token plus the viewing user's id."""

    access_token: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None

    @classmethod
    def from_access_token(cls, access_token: str, user_id: Optional[str] = None) -> "SessionCredentials":
        """
        Build credentials from a bearer token.

        Args:
            access_token: JWT issued by the identity provider
            user_id: Explicit user id; required when the token is opaque

        Raises:
            AuthenticationError: If no user id can be determined
        """
        try:
            claims = jwt.get_unverified_claims(access_token)
        except JWTError:
            if not user_id:
                raise AuthenticationError("Access token is not a readable JWT and no user id was given")
            claims = {}

        subject = user_id or claims.get("sub")
        if not subject:
            raise AuthenticationError("Access token has no subject claim")

        expires_at = None
        exp = claims.get("exp")
        if isinstance(exp, (int, float)):
            expires_at = datetime.fromtimestamp(exp, UTC)

        return cls(access_token=access_token, user_id=str(subject), expires_at=expires_at)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or now_utc()) >= self.expires_at

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


class SessionError(BaseModel):
    """User-visible error raised by a session operation (the error banner)."""

    kind: Literal["transient", "access_denied"]
    message: str
    retryable: bool = False
    occurred_at: datetime = Field(default_factory=now_utc)

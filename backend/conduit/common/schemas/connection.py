from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, SecretStr


class TokenSet(BaseModel):
    """Tokens parsed from a token endpoint response. Secrets never render in repr or logs."""

    access_token: SecretStr
    refresh_token: SecretStr | None = None
    token_type: str | None = None
    expires_at: datetime | None = None
    scopes: list[str] = Field(default_factory=list)


class AuthorizationRequest(BaseModel):
    url: str


class CallbackResult(BaseModel):
    connection_id: UUID
    service_id: str
    owner_id: str

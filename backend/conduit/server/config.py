from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings


class ServiceConfig(BaseModel):
    """OAuth2 and webhook settings of one external service."""

    authorize_url: str
    token_url: str
    refresh_url: str | None = Field(
        default=None, description="Defaults to token_url when the service has no separate one"
    )
    revoke_url: str | None = None
    client_id: str
    client_secret: SecretStr
    scopes: list[str] = Field(default_factory=list)
    token_endpoint_auth_method: str | None = Field(
        default=None, description="client_secret_basic (default) | client_secret_post | none"
    )
    use_pkce: bool = True
    api_base_url: str | None = Field(
        default=None, description="Base URL for service_request actions"
    )
    webhook_scheme: str | None = Field(
        default=None,
        description="Signature scheme for inbound webhooks, defaults to the service id",
    )


class ServerSettings(BaseSettings):
    """Server configuration using environment variables."""

    database_url: str = Field(
        default="sqlite:///./conduit.db", description="SQLAlchemy database URL"
    )

    # OAuth2 state
    signing_key: SecretStr = Field(description="Key used to sign OAuth2 state tokens")
    jwt_algorithm: str = Field(default="HS256")
    oauth_state_ttl_seconds: int = Field(
        default=600, description="How long an authorization request stays valid"
    )
    redirect_uri_base: str = Field(
        default="http://localhost:8000",
        description="Public base URL, the OAuth2 redirect URI is built from it",
    )
    post_oauth_redirect_url: str = Field(
        default="http://localhost:3000/integrations",
        description="Where the browser lands after the OAuth2 callback",
    )

    # Tokens
    token_encryption_key: SecretStr = Field(description="Fernet key for tokens at rest")
    token_refresh_margin_seconds: int = Field(
        default=300, description="Refresh access tokens expiring within this many seconds"
    )

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=10.0)

    # Webhook intake rate limit per requester IP
    webhook_rate_limit_per_second: float = Field(default=10)
    webhook_rate_limit_burst: int = Field(default=20)

    services: dict[str, ServiceConfig] = Field(
        default_factory=dict, description="Service definitions keyed by service id (JSON)"
    )
    transform_config: dict = Field(
        default_factory=dict,
        description="Values templates can read with config(key, default) (JSON)",
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    model_config = {"env_prefix": "CONDUIT_", "case_sensitive": False}

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.redirect_uri_base.rstrip('/')}/integrations/oauth/callback"

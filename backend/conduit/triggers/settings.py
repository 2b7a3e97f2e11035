from pydantic import Field
from pydantic_settings import BaseSettings


class TriggersSettings(BaseSettings):
    """Triggers module configuration using environment variables."""

    # Redis configuration
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the dispatch queue"
    )
    queue_name: str = Field(default="conduit-dispatch", description="RQ queue name")

    # Dispatch retries
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per dispatched action, the first one included"
    )
    backoff_seconds: int = Field(
        default=60,
        ge=0,
        description="Fixed delay between two attempts of the same action"
    )
    job_timeout_seconds: int = Field(default=300, description="RQ job timeout")
    action_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout of every outbound call an action makes"
    )

    # Replay protection
    max_timestamp_age_seconds: int = Field(
        default=300,  # 5 minutes
        description="Maximum allowed age for webhook timestamps"
    )

    model_config = {
        "env_prefix": "CONDUIT_TRIGGERS_",
        "case_sensitive": False
    }


# Global settings instance
settings = TriggersSettings()

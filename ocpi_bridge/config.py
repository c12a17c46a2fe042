import os

from pydantic import BaseModel


class Settings(BaseModel):
    ocpi_version: str = "2.2.1"
    # advisory hint returned with every CommandResponse, in seconds
    commands_timeout: int = 30

    http_host: str = "0.0.0.0"
    http_port: int = 8080
    ocpp_host: str = "0.0.0.0"
    ocpp_port: int = 9000

    # empty -> in-process cache and no change-event consumer
    redis_url: str = ""
    event_stream: str = "ocpi:events"
    event_group: str = "ocpi-bridge"
    event_consumer: str = "ocpi-bridge-1"

    partner_timeout: float = 10.0
    auth_ref_cache_ttl: int = 600
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build :class:`Settings` from environment variables."""

    return Settings(
        ocpi_version=os.getenv("OCPI_VERSION", "2.2.1"),
        commands_timeout=int(os.getenv("COMMANDS_TIMEOUT", "30")),
        http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
        http_port=int(os.getenv("HTTP_PORT", "8080")),
        ocpp_host=os.getenv("OCPP_HOST", "0.0.0.0"),
        ocpp_port=int(os.getenv("OCPP_PORT", "9000")),
        redis_url=os.getenv("REDIS_URL", ""),
        event_stream=os.getenv("EVENT_STREAM", "ocpi:events"),
        event_group=os.getenv("EVENT_GROUP", "ocpi-bridge"),
        event_consumer=os.getenv("EVENT_CONSUMER", "ocpi-bridge-1"),
        partner_timeout=float(os.getenv("PARTNER_TIMEOUT", "10")),
        auth_ref_cache_ttl=int(os.getenv("AUTH_REF_CACHE_TTL", "600")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )

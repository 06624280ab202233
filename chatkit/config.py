import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from chatkit.router import DEFAULT_MAX_BODY_LENGTH
from chatkit.sessions.session import DEFAULT_MAX_QUEUE, OverflowPolicy

ENV_PREFIX = "CHATKIT_"


class ChatSettings(BaseModel):
    """Runtime settings for a chat server deployment."""

    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=0, le=65535)

    # Kafka gateway is only started when this is set
    kafka_bootstrap_servers: str | None = None

    # SQLite file for durable history; in-memory history when unset
    history_db: str | None = None

    max_queue: int = Field(default=DEFAULT_MAX_QUEUE, gt=0)
    overflow: OverflowPolicy = OverflowPolicy.DROP_NEW
    send_timeout: float | None = Field(default=10.0, gt=0)
    idle_timeout: float | None = Field(default=300.0, gt=0)
    store_timeout: float | None = Field(default=5.0, gt=0)
    max_body_length: int = Field(default=DEFAULT_MAX_BODY_LENGTH, gt=0)

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "ChatSettings":
        """Build settings from ``CHATKIT_*`` environment variables.

        Values in a ``.env`` file are loaded first unless ``dotenv`` is False.
        Unset variables keep their defaults; an empty value for an optional
        timeout disables it.
        """
        if dotenv:
            load_dotenv()
        values: dict[str, str | None] = {}
        for name, field in cls.model_fields.items():
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            values[name] = None if raw == "" and _is_optional(field.annotation) else raw
        return cls.model_validate(values)


def _is_optional(annotation: object) -> bool:
    return type(None) in getattr(annotation, "__args__", ())

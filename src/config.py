from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Load .env from the project root and accept env keys in any case
    _env_file = Path(__file__).resolve().parent.parent / ".env"
    model_config = SettingsConfigDict(env_file=str(_env_file), extra="ignore", case_sensitive=False)

    app_name: str = "Horta Hub"
    app_version: str = "0.1.0"
    debug: bool = True
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 3000

    # MQTT
    mqtt_enabled: bool = True
    mqtt_host: str = "broker.hivemq.com"
    mqtt_port: int = 1883
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str = "horta-hub"
    mqtt_tls: bool = False
    mqtt_topic_prefix: str = Field(default="horta", description="First topic level shared by sensor and command topics.")
    mqtt_device_id: str = Field(default="plantA", description="Identifier of the ESP32 publishing sensor readings.")
    mqtt_reconnect_max_seconds: float = Field(
        default=30.0,
        ge=1.0,
        description="Upper bound for the exponential reconnect backoff.",
    )

    # Storage and live clients
    data_dir: str = Field(default="data", description="Directory holding the plants/tasks/users JSON collections.")
    live_queue_size: int = Field(
        default=32,
        ge=1,
        description="Pending snapshots buffered per live client before the oldest is dropped.",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

settings = Settings()

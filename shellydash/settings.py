from pydantic import BaseModel
import os
import time

class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./shellydash.db")
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    mqtt_host: str = os.getenv("MQTT_HOST", "localhost")
    mqtt_port: int = int(os.getenv("MQTT_PORT", "1883"))
    mqtt_username: str | None = os.getenv("MQTT_USERNAME") or None
    mqtt_password: str | None = os.getenv("MQTT_PASSWORD") or None
    mqtt_client_id: str = os.getenv("MQTT_CLIENT_ID", f"shellydash-{int(time.time())}")
    mqtt_keepalive: int = int(os.getenv("MQTT_KEEPALIVE", "30"))

    # src stamped into RPC requests; devices answer on "<rpc_source>/rpc"
    rpc_source: str = os.getenv("RPC_SOURCE", "user_1")

    reconnect_max_attempts: int = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "10"))
    reconnect_min_delay: float = float(os.getenv("RECONNECT_MIN_DELAY", "1"))
    reconnect_max_delay: float = float(os.getenv("RECONNECT_MAX_DELAY", "30"))
    connect_timeout: float = float(os.getenv("CONNECT_TIMEOUT", "10"))
    publish_buffer_size: int = int(os.getenv("PUBLISH_BUFFER_SIZE", "1000"))

    environment_window_seconds: float = float(os.getenv("ENVIRONMENT_WINDOW_SECONDS", "5"))
    rpc_timeout_seconds: float = float(os.getenv("RPC_TIMEOUT_SECONDS", "10"))
    subscriber_queue_size: int = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100"))

    default_device_id: str | None = os.getenv("DEFAULT_DEVICE_ID") or None
    default_device_prefix: str | None = os.getenv("DEFAULT_DEVICE_PREFIX") or None

    @property
    def rpc_response_topic(self) -> str:
        return f"{self.rpc_source}/rpc"

settings = Settings()

from pydantic import BaseModel
import os

class Settings(BaseModel):
    service_name: str = os.getenv("SERVICE_NAME", "telemetry-hub")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3333"))
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./telemetry_hub.db")
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "http://localhost:4173,http://localhost:5173").split(",")

    mqtt_enabled: bool = os.getenv("MQTT_ENABLED", "1") == "1"
    mqtt_host: str = os.getenv("MQTT_HOST", "localhost")
    mqtt_port: int = int(os.getenv("MQTT_PORT", "1883"))
    mqtt_username: str | None = os.getenv("MQTT_USERNAME") or None
    mqtt_password: str | None = os.getenv("MQTT_PASSWORD") or None
    mqtt_client_id: str | None = os.getenv("MQTT_CLIENT_ID") or None
    mqtt_topic: str = os.getenv("MQTT_TOPIC", "devices/+/telemetry")
    mqtt_qos: int = int(os.getenv("MQTT_QOS", "1"))

    # max concurrent messages in flight, the listener blocks past this
    ingest_workers: int = int(os.getenv("INGEST_WORKERS", "4"))
    ingest_queue_size: int = int(os.getenv("INGEST_QUEUE_SIZE", "100"))

    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "100"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "1000"))
    telemetry_cursor_mode: str = os.getenv("TELEMETRY_CURSOR_MODE", "id")  # id|composite

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "1") == "1"

settings = Settings()

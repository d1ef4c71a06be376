from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Groq
    groq_api_key: str = "gsk_placeholder"
    default_model: str = "llama-3.3-70b-versatile"
    summary_model: str = "llama-3.3-70b-versatile"
    summary_max_tokens: int = 2000
    summary_temperature: float = 0.7

    # Storage
    database_path: str = "tutor.db"

    # Ingestion
    merge_window_hours: float = 2.0

    # Rate limiting (transcript uploads)
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_requests: int = 10
    rate_limit_cleanup_probability: float = 0.01

    # Summary worker
    summary_max_attempts: int = 3
    summary_retry_delay_seconds: float = 5.0

    # Chat
    chat_history_limit: int = 20
    max_messages_per_chat: int | None = None

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origin_regex: str = ".*"
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Client: store endpoint and request resilience
    chat_api_url: str = "http://localhost:3001"
    chat_request_timeout: float = 30.0
    chat_send_timeout: float = 45.0  # waits on an upstream completion
    chat_health_timeout: float = 5.0
    chat_max_retries: int = 3
    chat_retry_initial_delay: float = 1.0

    # Server
    chat_host: str = "127.0.0.1"
    chat_port: int = 3001
    chat_db_url: str = "sqlite+aiosqlite:///./chat.db"
    chat_cors_origins: str = "*"

    # Logging
    chat_log_level: str = "info"

    # Completion provider (mock replies when no key is set)
    ai_api_key: str | None = None
    ai_base_url: str = "https://api.openai.com/v1"
    ai_model: str = "gpt-3.5-turbo"
    ai_temperature: float = 0.7
    ai_timeout: float = 30.0
    ai_system_prompt: str = "You are a helpful assistant."

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

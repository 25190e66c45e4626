from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Orchestration backend
    orchestrator_base_url: str = "http://localhost:3000"
    orchestrator_api_key: str = ""  # sent as X-API-Key when set
    request_timeout_seconds: float = 120.0

    # Streaming
    stream_enabled: bool = True
    stream_idle_timeout_seconds: float = 180.0  # 0 disables the idle timeout

    # History / cost
    history_limit: int = 10
    synthesizer_model: str = "anthropic/claude-3.5-sonnet"

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = False
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def api_base_url(self) -> str:
        return self.orchestrator_base_url.rstrip("/")


settings = Settings()

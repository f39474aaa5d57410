from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Job Application Pipeline"
    environment: str = "dev"
    debug: bool = True
    log_level: str = "INFO"
    log_json: bool = True

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    database_url: str = "sqlite:///./jobpilot.db"
    redis_url: str = "redis://localhost:6379/0"

    local_api_key: str = "change-me"
    secret_key: str = "dev-secret"
    token_ttl_seconds: int = 8 * 60 * 60

    llm_provider: str = "mock"
    llm_model: str = "gpt-4o-mini"
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 1200
    llm_timeout_seconds: int = 45

    job_search_provider: str = "mock"
    serpapi_key: str = ""
    serpapi_base_url: str = "https://serpapi.com/search.json"
    job_search_timeout_seconds: int = 30
    default_location: str = "Pakistan"
    default_max_jobs: int = 5
    max_jobs_limit: int = 10

    hunter_api_key: str = ""
    hunter_base_url: str = "https://api.hunter.io/v2"
    hunter_timeout_seconds: int = 20
    hunter_domain_search_limit: int = 10
    # Free tier: 25 domain searches and 50 verifications per month.
    hunter_search_quota: int = 25
    hunter_verify_quota: int = 50
    hunter_quota_window_seconds: int = 30 * 24 * 60 * 60
    allow_estimated_contacts: bool = True

    email_sender: str = "mock"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_timeout_seconds: int = 30

    render_engine: str = "playwright"
    render_headless: bool = True
    render_timeout_ms: int = 30000

    ollama_base_url: str = "http://localhost:11434/v1"
    ollama_model: str = "llama3:8b"
    ollama_timeout_seconds: int = 120
    chat_history_turns: int = 20

    activity_log_limit: int = 80
    cv_review_ttl_minutes: int = 240
    email_review_ttl_minutes: int = 120
    background_workers: int = 4

    output_dir: Path = Path("output")
    generated_cv_dir: Path = Path("output/generated_cvs")
    upload_dir: Path = Path("output/uploads")
    max_upload_bytes: int = 5 * 1024 * 1024

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

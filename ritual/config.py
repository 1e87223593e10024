from pydantic_settings import BaseSettings
from pathlib import Path

# Get the project root directory (parent of ritual folder)
PROJECT_ROOT = Path(__file__).parent.parent

class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'ritual.db'}"
    log_level: str = "INFO"

    # AI Provider Configuration
    ai_provider: str = "ollama"  # "ollama" or "claude"

    # Ollama settings (for local development)
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:latest"

    # Claude API settings (for production)
    claude_api_key: str = ""
    claude_model: str = "claude-3-5-sonnet-20241022"

    # Location used when a couple has not chosen one
    default_city: str = "New York"

    # Timeouts (seconds)
    read_timeout_seconds: float = 10.0
    generation_timeout_seconds: float = 45.0
    generation_ceiling_seconds: float = 90.0  # also the age of a claim considered abandoned

    # Polling / retries
    poll_interval_seconds: float = 5.0
    read_retries: int = 3
    retry_backoff_seconds: float = 0.5

    # Weekly input rules
    min_mood_tags: int = 1
    max_mood_tags: int = 5
    max_desire_length: int = 500
    required_picks: int = 3

    # "week_parity", "iso_week", "alternate" or "first_submitter"
    picker_rotation: str = "week_parity"

    class Config:
        env_file = str(PROJECT_ROOT / ".env")

settings = Settings()

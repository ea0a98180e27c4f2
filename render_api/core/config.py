"""
Configuration settings for the render API
"""
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "HK Render Studio API"
    environment: str = "development"

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ]

    # Image generation upstream (StepFun-compatible)
    stepfun_api_key: str = ""
    stepfun_image_api_key: str = ""  # Legacy name, used only when stepfun_api_key is empty
    image_api_base_url: str = "https://api.stepfun.com/v1"
    image_model: str = "step-1x-medium"

    # Timeouts (seconds)
    fetch_timeout_seconds: float = 30.0
    generation_timeout_seconds: float = 180.0
    generation_budget_seconds: float = 280.0
    rate_limit_backoff_seconds: float = 0.9

    # Orchestration tuning
    job_stale_after_seconds: float = 180.0
    refine_enabled: bool = True
    refine_skip_presets: List[str] = ["light"]
    refine_min_budget_seconds: float = 22.0
    temporary_result_ttl_seconds: Optional[float] = None  # Unset: cache entries never expire here

    # Storage: "memory", "local" or "redis"
    store_backend: str = "local"
    redis_url: str = "redis://localhost:6379/0"
    store_key_prefix: str = "render"
    local_store_dir: str = "data/store"
    public_base_url: str = "http://localhost:8000"
    static_mount_path: str = "/files"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env

    @property
    def image_api_key(self) -> Optional[str]:
        """Resolved upstream key, falling back to the legacy variable."""
        return self.stepfun_api_key or self.stepfun_image_api_key or None


# Global settings instance
settings = Settings()

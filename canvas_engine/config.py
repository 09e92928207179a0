"""Pydantic Settings loaded from environment."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    functions_url: str = ""  # e.g. https://<project>.supabase.co/functions/v1
    supabase_url: str = ""
    supabase_key: str = ""
    storage_bucket: str = "content-media"
    upload_dir: str = "/tmp/canvas-uploads"
    cache_path: str = ""  # empty keeps the extraction cache in memory
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    autosave_delay_seconds: float = 3.0
    saved_display_seconds: float = 2.0
    analysis_timeout_seconds: float = 90.0
    analysis_batch_size: int = 3
    remote_timeout_seconds: float = 120.0
    generation_timeout_seconds: float = 300.0

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1" if self.supabase_url else ""


settings = Settings()

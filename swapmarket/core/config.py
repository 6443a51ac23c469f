from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional

class Settings(BaseSettings):
    app_name: str = "SwapMarket API"
    environment: str = "production"
    debug: bool = False
    api_v1_prefix: str = "/api/v1"
    frontend_url: str = "http://localhost:3000"
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]
    # Public URL of the web client, used to build deep links
    base_url: str = "http://localhost:3000"

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    jwt_secret: str = "your-secret-key"
    jwt_algorithm: str = "HS256"

    push_gateway_url: Optional[str] = None
    push_timeout_ms: int = 7000
    push_auto_dismiss_ms: int = 7000

    reconcile_interval_seconds: int = 300

    blocked_words: List[str] = [
        "amk", "orospu", "siktir", "pezevenk", "şerefsiz",
        "fuck", "bitch", "asshole", "escort", "porno",
    ]

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration sourced from environment variables."""

    data_dir: str | None = None
    official_domains: list[str] = Field(
        default_factory=lambda: ["fec.gov", "osha.gov", "epa.gov", "ilo.org", "sec.gov", "fda.gov"]
    )

    # Verification
    corroboration_threshold: float = Field(0.80, ge=0.0, le=1.0)
    lower_credibility_bar: float = Field(0.60, ge=0.0, le=1.0)
    default_credibility: float = Field(0.6, ge=0.0, le=1.0)
    sweep_window_days: int = Field(14, ge=1)

    # Deduplication
    dedup_similarity_threshold: float = Field(0.75, ge=0.0, le=1.0)

    # Batch jobs
    max_brands_per_job: int = Field(500, ge=1)
    max_concurrent_brands: int = Field(8, ge=1)

    # Personalized scoring
    dealbreaker_label: str = "dealbreaker"
    dealbreaker_overall_cap: float | None = Field(default=None, ge=0.0, le=100.0)

    # Rate limiting
    rate_limit_backend: str = "memory"
    rate_limit_capacity: int = Field(30, ge=1)
    rate_limit_refill_per_second: float = Field(0.5, gt=0.0)
    redis_url: str = "redis://localhost:6379"
    redis_ttl_buckets: int = 3600

    cors_origins: str = "*"
    debug: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "",
        "case_sensitive": False,
    }

    def get_cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache(1)
def get_settings() -> Settings:
    return Settings()

import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _domains(raw: str) -> Tuple[str, ...]:
    return tuple(d.strip().lower().lstrip("@") for d in raw.split(",") if d.strip())


@dataclass(frozen=True)
class Settings:
    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "llama-3.3-70b-versatile"
    auth_api_key: str = ""
    auth_base_url: str = "https://identitytoolkit.googleapis.com/v1"
    university_domains: Tuple[str, ...] = ("iut-dhaka.edu", "du.edu")
    store_path: str = ""
    cache_max_size: int = 1000
    cache_default_ttl_seconds: float = 300
    cache_detail_ttl_seconds: float = 120
    listings_per_page: int = 12
    accept_bid_max_attempts: int = 5
    accept_bid_retry_delay_seconds: float = 0.5
    maintenance_interval_minutes: int = 10
    reconcile_on_start: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            groq_api_key=os.getenv("GROQ_API_KEY", ""),
            groq_base_url=os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1"),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
            auth_api_key=os.getenv("AUTH_API_KEY", ""),
            auth_base_url=os.getenv("AUTH_BASE_URL", "https://identitytoolkit.googleapis.com/v1"),
            university_domains=_domains(os.getenv("UNIVERSITY_DOMAINS", "iut-dhaka.edu,du.edu")),
            store_path=os.getenv("STORE_PATH", ""),
            cache_max_size=int(os.getenv("CACHE_MAX_SIZE", "1000")),
            cache_default_ttl_seconds=float(os.getenv("CACHE_DEFAULT_TTL_SECONDS", "300")),
            cache_detail_ttl_seconds=float(os.getenv("CACHE_DETAIL_TTL_SECONDS", "120")),
            listings_per_page=int(os.getenv("LISTINGS_PER_PAGE", "12")),
            accept_bid_max_attempts=int(os.getenv("ACCEPT_BID_MAX_ATTEMPTS", "5")),
            accept_bid_retry_delay_seconds=float(os.getenv("ACCEPT_BID_RETRY_DELAY_SECONDS", "0.5")),
            maintenance_interval_minutes=int(os.getenv("MAINTENANCE_INTERVAL_MINUTES", "10")),
            reconcile_on_start=_flag("RECONCILE_ON_START", "true"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def masked_summary(self) -> dict:
        key = self.groq_api_key
        return {
            "groq_api_key": (key[:4] + "…") if key else None,
            "groq_model": self.groq_model,
            "auth_api_key": "***" if self.auth_api_key else None,
            "university_domains": self.university_domains,
            "store_path": self.store_path or "(memory)",
            "cache_max_size": self.cache_max_size,
            "maintenance_interval_minutes": self.maintenance_interval_minutes,
        }


settings = Settings.from_env()

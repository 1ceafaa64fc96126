import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    domain: str = "localhost:8000"
    site_name: str = "eventpub"
    is_federated: bool = True
    mongo_url: Optional[str] = None
    mongo_db: str = "eventpub"
    redis_url: Optional[str] = None
    delivery_timeout: float = 10.0
    key_fetch_timeout: float = 10.0
    key_cache_ttl: float = 300.0
    key_cache_size: int = 512
    broadcast_concurrency: int = 10
    user_agent: str = "eventpub/0.1"
    log_level: str = "INFO"

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}"

    @property
    def inbox_url(self) -> str:
        return f"{self.base_url}/activitypub/inbox"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            domain=os.getenv("DOMAIN", "localhost:8000"),
            site_name=os.getenv("SITE_NAME", "eventpub"),
            is_federated=_env_flag("IS_FEDERATED", True),
            mongo_url=os.getenv("MONGO_URL") or None,
            mongo_db=os.getenv("MONGO_DB", "eventpub"),
            redis_url=os.getenv("REDIS_URL") or None,
            delivery_timeout=float(os.getenv("DELIVERY_TIMEOUT", "10")),
            key_fetch_timeout=float(os.getenv("KEY_FETCH_TIMEOUT", "10")),
            key_cache_ttl=float(os.getenv("KEY_CACHE_TTL", "300")),
            key_cache_size=int(os.getenv("KEY_CACHE_SIZE", "512")),
            broadcast_concurrency=int(os.getenv("BROADCAST_CONCURRENCY", "10")),
            user_agent=os.getenv("USER_AGENT", "eventpub/0.1"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

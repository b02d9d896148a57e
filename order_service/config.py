"""
Order Service — configuration

Read once at startup from the environment. The lifespan hook turns these
values into the engine, the Paystack client and the Redis pool.
"""

import os
from dataclasses import dataclass

DEFAULT_PAYSTACK_BASE_URL = "https://api.paystack.co"


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str
    paystack_secret_key: str
    paystack_base_url: str = DEFAULT_PAYSTACK_BASE_URL
    paystack_callback_url: str | None = None
    paystack_timeout: float = 10.0
    redis_url: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        secret = os.environ.get("PAYSTACK_SECRET_KEY")
        if not secret:
            raise RuntimeError("PAYSTACK_SECRET_KEY is not defined in environment variables")
        return cls(
            database_url=os.environ["DATABASE_URL"],
            paystack_secret_key=secret,
            paystack_base_url=os.environ.get("PAYSTACK_BASE_URL", DEFAULT_PAYSTACK_BASE_URL),
            paystack_callback_url=os.environ.get("PAYSTACK_CALLBACK_URL") or None,
            paystack_timeout=float(os.environ.get("PAYSTACK_TIMEOUT", "10.0")),
            redis_url=os.environ.get("REDIS_URL") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

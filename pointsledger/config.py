import logging
import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _is_enabled(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_tokens(value: str) -> dict[str, str]:
    tokens = {}
    for pair in value.split(","):
        if not pair.strip():
            continue
        token, sep, uid = pair.partition(":")
        if not sep or not token.strip() or not uid.strip():
            raise ValueError(f"Invalid LEDGER_STATIC_TOKENS entry: {pair!r}")
        tokens[token.strip()] = uid.strip()
    return tokens


class Settings(BaseModel):
    backend: Literal["memory", "firestore"] = "memory"
    auth: Literal["static", "firebase"] = "static"
    static_tokens: dict[str, str] = Field(default_factory=dict)
    starting_points: int = Field(default=500, ge=0)
    transaction_attempts: int = Field(default=5, ge=1)
    allow_free_redemptions: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            backend=env.get("LEDGER_BACKEND", "memory"),
            auth=env.get("LEDGER_AUTH", "static"),
            static_tokens=_parse_tokens(env.get("LEDGER_STATIC_TOKENS", "")),
            starting_points=env.get("LEDGER_STARTING_POINTS", 500),
            transaction_attempts=env.get("LEDGER_TRANSACTION_ATTEMPTS", 5),
            allow_free_redemptions=_is_enabled(env.get("LEDGER_ALLOW_FREE_REDEMPTIONS")),
            log_level=env.get("LEDGER_LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in env.get("LEDGER_CORS_ORIGINS", "*").split(",") if o.strip()],
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)

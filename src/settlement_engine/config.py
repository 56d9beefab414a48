"""Process settings for the settlement engine.

Values come from the environment (optionally a ``.env`` file). Business
policy lives in :mod:`settlement_engine.policy`; only the knobs an operator
flips per deployment are read here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from settlement_engine.policy import EscrowConfig, GatewayConfig, SettlementConfig


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    engine_version: str
    host: str
    port: int
    debug: bool
    gateway_sandbox: bool
    gateway_webhook_secret: str | None
    gateway_timeout_seconds: int
    escrow_hold_days: int
    auto_release_enabled: bool

    @classmethod
    def from_env(cls) -> Settings:
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./settlement_dev.db"),
            engine_version=os.getenv("ENGINE_VERSION", "1.0.0"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=_flag("DEBUG", False),
            gateway_sandbox=_flag("GATEWAY_SANDBOX", True),
            gateway_webhook_secret=os.getenv("GATEWAY_WEBHOOK_SECRET") or None,
            gateway_timeout_seconds=int(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30")),
            escrow_hold_days=int(os.getenv("ESCROW_HOLD_DAYS", "1")),
            auto_release_enabled=_flag("ESCROW_AUTO_RELEASE", True),
        )

    def settlement_config(self) -> SettlementConfig:
        """Default policy with the deployment overrides applied."""
        return SettlementConfig(
            escrow=EscrowConfig(
                hold_days=self.escrow_hold_days,
                auto_release_enabled=self.auto_release_enabled,
            ),
            gateway=GatewayConfig(
                sandbox=self.gateway_sandbox,
                timeout_seconds=self.gateway_timeout_seconds,
                webhook_secret=self.gateway_webhook_secret,
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()

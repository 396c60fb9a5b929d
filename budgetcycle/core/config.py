"""Engine configuration.

Values come from BUDGETCYCLE_* environment variables with sane defaults.
"""

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Tunables shared by the engine and the CLI."""

    balance_tolerance: Decimal = Field(default=Decimal("0.01"), gt=0)
    default_cycle_days: int = Field(default=30, ge=1)
    history_page_default: int = Field(default=12, ge=1)
    history_page_max: int = Field(default=60, ge=1)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            balance_tolerance=Decimal(os.getenv("BUDGETCYCLE_BALANCE_TOLERANCE", "0.01")),
            default_cycle_days=int(os.getenv("BUDGETCYCLE_DEFAULT_CYCLE_DAYS", "30")),
            history_page_default=int(os.getenv("BUDGETCYCLE_HISTORY_PAGE_DEFAULT", "12")),
            history_page_max=int(os.getenv("BUDGETCYCLE_HISTORY_PAGE_MAX", "60")),
            log_level=os.getenv("BUDGETCYCLE_LOG_LEVEL", "WARNING").upper(),
        )


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
    return EngineConfig.from_env()

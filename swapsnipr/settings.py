from pathlib import Path
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, model_validator
import tomllib
import os
import random

SWAPSNIPR_ROOT = Path(os.getenv("SWAPSNIPR_ROOT", ".")).resolve()


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AccountCfg(_Frozen):
    exists: bool = False
    email: str = ""
    given_name: str = ""
    family_name: str = ""
    connection_link: str = ""

    @model_validator(mode="after")
    def _check_credentials(self):
        if self.exists:
            if not self.connection_link:
                raise ValueError(
                    "account.connection_link has to be filled if the account exists"
                )
        elif not (self.email and self.given_name and self.family_name):
            raise ValueError(
                "account.email, account.given_name and account.family_name "
                "have to be filled if the account doesn't exist"
            )
        return self


class PurchaseCfg(_Frozen):
    max_price: Decimal = Field(gt=0)
    tickets_count: int = Field(gt=0)


class PollingCfg(_Frozen):
    min_delay_ms: int = Field(default=400, ge=0)
    max_delay_ms: int = Field(default=4000, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.max_delay_ms < self.min_delay_ms:
            raise ValueError("polling.max_delay_ms must be >= polling.min_delay_ms")
        return self


class BrowserCfg(_Frozen):
    headless: bool = True
    timeout_ms: int = Field(default=30_000, gt=0)
    logs_dir: Path = Path("logs")


class Settings(_Frozen):
    url: str = Field(min_length=1)
    account: AccountCfg
    purchase: PurchaseCfg
    polling: PollingCfg = PollingCfg()
    browser: BrowserCfg = BrowserCfg()

    # ---- helpers -----------------------------------------------------

    def random_delay_ms(self) -> int:
        """Backoff drawn from [min_delay_ms, max_delay_ms)."""
        lo, hi = self.polling.min_delay_ms, self.polling.max_delay_ms
        if hi == lo:
            return lo
        return random.randrange(lo, hi)


def load_settings(path: Path | None = None) -> Settings:
    cfg_path = path or Path(os.getenv("SWAPSNIPR_CONFIG", "swapsnipr.toml"))
    raw = tomllib.loads(cfg_path.read_text()) if cfg_path.exists() else {}
    return Settings.model_validate(raw)

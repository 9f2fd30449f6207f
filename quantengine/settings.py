"""Centralized engine settings powered by Pydantic.

Environment matrix:

| Section    | Environment Variable          | Default  | Purpose                                         |
|------------|-------------------------------|----------|-------------------------------------------------|
| Risk       | `QUANT_CONFIDENCE_LEVEL`      | `0.95`   | Default VaR/CVaR confidence level               |
| Risk       | `QUANT_RISK_FREE_RATE`        | `0.05`   | Annual risk-free rate for Sharpe/Sortino        |
| Risk       | `QUANT_TRADING_DAYS`          | `252`    | Periods per year used for annualization         |
| Risk       | `QUANT_DEFAULT_VOLATILITY`    | `0.50`   | Estimated annual volatility without history     |
| Risk       | `QUANT_DEFAULT_CORRELATION`   | `0.0`    | Estimated pairwise correlation without history  |
| Risk       | `QUANT_DOWNSIDE_RATIO`        | `0.7`    | Downside deviation / volatility estimate        |
| Risk       | `QUANT_CVAR_TAIL_FACTOR`      | `1.25`   | Parametric CVaR = VaR x factor                  |
| Risk       | `QUANT_CORRELATION_ALERT`     | `0.7`    | Pairs above this correlation are flagged        |
| Risk       | `QUANT_ALERT_HISTORY_SIZE`    | `100`    | Capacity of caller-owned alert ring buffers     |
| Simulation | `QUANT_MC_SIMULATIONS`        | `1000`   | Default number of Monte Carlo paths             |
| Simulation | `QUANT_MC_HORIZON_DAYS`       | `30`     | Default projection horizon                      |
| Simulation | `QUANT_MC_MIN_SIMULATIONS`    | `100`    | Smallest accepted path count                    |
| Simulation | `QUANT_MC_BATCH_SIZE`         | `250`    | Paths per map-reduce batch                      |
| Simulation | `QUANT_MC_MAX_WORKERS`        | `1`      | Thread workers for path batches                 |
| Simulation | `QUANT_MC_DAYS_PER_YEAR`      | `365`    | Calendar days used to derive daily drift/vol    |
| Simulation | `QUANT_MC_SEED`               | `None`   | Root seed; unset draws fresh OS entropy         |
| Backtest   | `QUANT_BT_INITIAL_CAPITAL`    | `10000`  | Starting cash                                   |
| Backtest   | `QUANT_BT_DAYS`               | `90`     | Trailing days replayed when none are requested  |
| Backtest   | `QUANT_BT_WINDOW`             | `30`     | Trailing bars handed to the signal function     |
| Backtest   | `QUANT_BT_MIN_BARS`           | `30`     | Minimum series length                           |
| Backtest   | `QUANT_BT_SWEEP_WORKERS`      | `4`      | Thread workers for strategy sweeps              |
| Logging    | `LOG_LEVEL`                   | `INFO`   | Root log level                                  |
| Logging    | `ENV`                         | `local`  | Deployment environment label                    |
| Logging    | `GIT_SHA`                     | `None`   | Commit attached to log records                  |

The settings objects source environment variables at instantiation and are
intended to be treated as read-only. Explicit function arguments always win
over these defaults.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class _SettingsBase(BaseSettings):
    """Common configuration for BaseSettings subclasses."""

    model_config = SettingsConfigDict(
        env_prefix="",
        populate_by_name=True,
        extra="ignore",
        case_sensitive=True,
        frozen=True,
    )


class RiskSettings(_SettingsBase):
    """Defaults and policy constants for portfolio risk metrics."""

    confidence_level: float = Field(default=0.95, alias="QUANT_CONFIDENCE_LEVEL")
    risk_free_rate: float = Field(default=0.05, alias="QUANT_RISK_FREE_RATE")
    trading_days: int = Field(default=252, alias="QUANT_TRADING_DAYS")
    default_volatility: float = Field(default=0.50, alias="QUANT_DEFAULT_VOLATILITY")
    default_correlation: float = Field(
        default=0.0, alias="QUANT_DEFAULT_CORRELATION"
    )
    downside_ratio: float = Field(default=0.7, alias="QUANT_DOWNSIDE_RATIO")
    cvar_tail_factor: float = Field(default=1.25, alias="QUANT_CVAR_TAIL_FACTOR")
    correlation_alert: float = Field(default=0.7, alias="QUANT_CORRELATION_ALERT")
    alert_history_size: int = Field(default=100, alias="QUANT_ALERT_HISTORY_SIZE")

    @field_validator("default_correlation")
    @classmethod
    def _check_correlation(cls, value: float) -> float:
        if not -1.0 <= value <= 1.0:
            raise ValueError("default correlation must lie in [-1, 1]")
        return value


class SimulationSettings(_SettingsBase):
    """Monte Carlo defaults."""

    simulations: int = Field(default=1000, alias="QUANT_MC_SIMULATIONS")
    horizon_days: int = Field(default=30, alias="QUANT_MC_HORIZON_DAYS")
    min_simulations: int = Field(default=100, alias="QUANT_MC_MIN_SIMULATIONS")
    batch_size: int = Field(default=250, alias="QUANT_MC_BATCH_SIZE")
    max_workers: int = Field(default=1, alias="QUANT_MC_MAX_WORKERS")
    days_per_year: int = Field(default=365, alias="QUANT_MC_DAYS_PER_YEAR")
    seed: int | None = Field(default=None, alias="QUANT_MC_SEED")

    @field_validator("seed", mode="before")
    @classmethod
    def _coerce_seed(cls, value: int | str | None) -> int | None:
        if value in (None, ""):
            return None
        return int(value)

    @field_validator("max_workers", "batch_size", mode="before")
    @classmethod
    def _coerce_positive(cls, value: int | str | None) -> int:
        if value in (None, ""):
            return 1
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 1

    @computed_field
    @property
    def seeded(self) -> bool:
        return self.seed is not None


class BacktestSettings(_SettingsBase):
    """Backtest simulator defaults."""

    initial_capital: float = Field(default=10_000.0, alias="QUANT_BT_INITIAL_CAPITAL")
    days: int = Field(default=90, alias="QUANT_BT_DAYS")
    window: int = Field(default=30, alias="QUANT_BT_WINDOW")
    min_bars: int = Field(default=30, alias="QUANT_BT_MIN_BARS")
    sweep_workers: int = Field(default=4, alias="QUANT_BT_SWEEP_WORKERS")


class LoggingSettings(_SettingsBase):
    """Log level and the metadata attached to every record."""

    level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: str = Field(default="local", alias="ENV")
    git_sha: str | None = Field(default=None, alias="GIT_SHA")

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: str | None) -> str:
        return (value or "INFO").upper()


class Settings(BaseModel):
    """Aggregate accessor for domain-specific settings."""

    risk: RiskSettings = Field(default_factory=RiskSettings)
    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "frozen": True,
        "arbitrary_types_allowed": True,
    }


def get_settings() -> Settings:
    """Instantiate settings from the current environment."""
    return Settings()


def reload_settings() -> Settings:
    """Alias for get_settings to maintain a consistent API."""
    return get_settings()


def get_risk_settings() -> RiskSettings:
    return get_settings().risk


def get_simulation_settings() -> SimulationSettings:
    return get_settings().simulation


def get_backtest_settings() -> BacktestSettings:
    return get_settings().backtest


def get_logging_settings() -> LoggingSettings:
    return get_settings().logging


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "get_risk_settings",
    "get_simulation_settings",
    "get_backtest_settings",
    "get_logging_settings",
    "RiskSettings",
    "SimulationSettings",
    "BacktestSettings",
    "LoggingSettings",
]

"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败（extra="forbid"），避免 typo 在长时间模拟中“隐蔽爆炸”。
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccountConfig(BaseModel):
    """账户配置。"""
    id: str = "default"
    initial_balance: Decimal = Decimal("10000")
    model_config = ConfigDict(extra="forbid")

    @field_validator("initial_balance")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("initial_balance must be >= 0")
        return v


class TradingConfig(BaseModel):
    """交易默认值（对应前端的账户偏好）。"""
    position_mode: Literal["ONE_WAY", "HEDGE"] = "ONE_WAY"
    default_margin_mode: Literal["ISOLATED", "CROSS"] = "ISOLATED"
    default_leverage: Decimal = Decimal("20")
    confirmations_enabled: bool = False
    # 维持保证金率，固定 0.5%
    maintenance_margin_rate: Decimal = Decimal("0.005")
    model_config = ConfigDict(extra="forbid")

    @field_validator("default_leverage")
    @classmethod
    def _leverage_at_least_one(cls, v: Decimal) -> Decimal:
        if v < 1:
            raise ValueError("default_leverage must be >= 1")
        return v

    @field_validator("maintenance_margin_rate")
    @classmethod
    def _mmr_range(cls, v: Decimal) -> Decimal:
        if not (0 <= v < 1):
            raise ValueError("maintenance_margin_rate must be in [0, 1)")
        return v


class HistoryConfig(BaseModel):
    """平仓历史配置。

    说明：
    - 默认只有手动全平写入历史（部分平仓/一键全平/TP/SL 不写），与前端行为一致；
    - record_all_closes=True 时所有平仓（强平除外）都写入。
    """
    record_all_closes: bool = False
    csv_dir: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class StateConfig(BaseModel):
    """本地状态持久化（SQLite）配置。"""
    enabled: bool = True
    path: str = "dataset/state/engine.sqlite3"
    autosave: bool = True
    model_config = ConfigDict(extra="forbid")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    model_config = ConfigDict(extra="forbid")


class EngineConfig(BaseModel):
    """应用总配置。"""
    symbol: str = "BTCUSDT"
    account: AccountConfig = Field(default_factory=AccountConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("symbol")
    @classmethod
    def _symbol_upper(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must be a non-empty string")
        return v

"""配置架构定义（Pydantic Schema）。

目标：
- 一次运行内配置不可变（frozen），引擎与策略只读；
- 启动阶段尽早失败：未知字段、非法周期、非正资金都在加载时报错；
- 扫参时通过 `with_strategy_params` 派生新配置，而不是原地修改。
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_TIMEFRAME_RE = re.compile(r"^\d+[smhdw]$")


class TradingMode(str, Enum):
    SPOT = "Spot"
    USDS_M_FUTURES = "USDS-M Futures"


class RiskMode(str, Enum):
    """用户锁定止损/止盈的取值方式：占投入资金的百分比，或绝对金额。"""

    PERCENT = "percent"
    AMOUNT = "amount"


class MarginType(str, Enum):
    ISOLATED = "ISOLATED"
    CROSSED = "CROSSED"


class StrategyConfig(BaseModel):
    """策略配置（id + params）。

    说明：
    - 策略以数字 id 注册（见 algo.strategy.registry）；
    - `strategy:` 下除 id/params 以外的扁平字段会自动挪进 `params`。
    """

    id: int
    params: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _pack_flat_params(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if set(data.keys()) <= {"id", "params"}:
            return data
        params = {k: v for k, v in data.items() if k not in {"id", "params"}}
        existing = data.get("params")
        if isinstance(existing, dict):
            params = {**params, **existing}
        return {"id": data.get("id"), "params": params}


class BotConfig(BaseModel):
    """单次回测/实盘会话的完整配置（运行期间不可变）。"""

    pair: str = "BTCUSDT"
    mode: TradingMode = TradingMode.SPOT
    execution_mode: Literal["paper", "live"] = "paper"
    timeframe: str = "5m"
    management_timeframe: Optional[str] = "1m"
    strategy: StrategyConfig

    investment_amount: float = Field(default=100.0, gt=0)
    leverage: float = Field(default=1.0, ge=1)
    margin_type: MarginType = MarginType.ISOLATED

    stop_loss_mode: RiskMode = RiskMode.PERCENT
    stop_loss_value: float = Field(default=2.0, ge=0)
    take_profit_mode: RiskMode = RiskMode.PERCENT
    take_profit_value: float = Field(default=4.0, ge=0)
    is_stop_loss_locked: bool = False
    is_take_profit_locked: bool = False

    is_cooldown_enabled: bool = False
    is_htf_confirmation_enabled: bool = False
    htf_timeframe: Optional[str] = None
    htf_ema_period: int = Field(default=50, gt=0)
    is_universal_profit_trail_enabled: bool = False
    is_min_rr_enabled: bool = False

    price_precision: int = Field(default=2, ge=0)
    quantity_precision: int = Field(default=5, ge=0)
    step_size: float = Field(default=0.00001, ge=0)
    fee_rate: float = Field(default=0.001, ge=0)
    # 单笔最大亏损占投入资金的百分比（硬性止损上限）
    max_stop_loss_percent: float = Field(default=5.0, gt=0)
    min_bars: int = Field(default=200, ge=2)
    starting_capital: float = 10000.0

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("timeframe", "management_timeframe", "htf_timeframe")
    @classmethod
    def _check_timeframe(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not _TIMEFRAME_RE.match(v):
            raise ValueError(f"invalid timeframe: {v!r} (expected e.g. '1m', '4h', '1d')")
        return v

    @property
    def is_futures(self) -> bool:
        return self.mode is TradingMode.USDS_M_FUTURES

    @property
    def position_value(self) -> float:
        """名义仓位价值：合约为 投入 × 杠杆，现货为投入本身。"""
        if self.is_futures:
            return self.investment_amount * self.leverage
        return self.investment_amount

    def with_strategy_params(self, params: Dict[str, Any]) -> "BotConfig":
        """派生一份新配置：params 覆盖到原策略参数之上。"""
        merged = {**dict(self.strategy.params), **dict(params)}
        strategy = StrategyConfig(id=self.strategy.id, params=merged)
        return self.model_copy(update={"strategy": strategy})


ParamRange = Union[List[Any], Dict[str, float]]


class OptimizationConfig(BaseModel):
    """扫参配置：参数范围为显式列表或 {start, end, step}。"""

    ranges: Dict[str, ParamRange] = Field(default_factory=dict)
    max_combinations: int = Field(default=200, gt=0)
    max_workers: int = Field(default=1, ge=1)
    top_n: int = Field(default=10, gt=0)
    model_config = ConfigDict(extra="forbid")


class DataConfig(BaseModel):
    """CSV 行情文件路径。management/htf 缺省时从 primary 推导或聚合。"""

    primary: str
    management: Optional[str] = None
    htf: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class AppConfig(BaseModel):
    """应用总配置（YAML 顶层）。"""

    bot: BotConfig
    data: Optional[DataConfig] = None
    optimization: Optional[OptimizationConfig] = None
    model_config = ConfigDict(extra="forbid")

"""
Configuration loading for the Proton DEX bot.

Per-pair strategy parameters live in a JSON file (``config/default.json`` by
default) shaped like::

    {
      "strategy": "gridBot",
      "gridBot": {"pairs": [{"symbol": "XPR_XMD", "upperLimit": 0.0035,
                             "lowerLimit": 0.0027, "gridLevels": 8,
                             "bidAmountPerLevel": 10}]},
      "marketMaker": {"pairs": [{"symbol": "XPR_XUSDC", "gridLevels": 3,
                                 "gridInterval": 0.01, "base": "AVERAGE",
                                 "orderSide": "BOTH", "bidAmountPerLevel": 10}]}
    }

Environment variables (a ``.env`` file is honoured) override the file:
    PROTON_CONFIG_FILE (default: config/default.json)
    PROTON_USERNAME (required)
    PROTON_STRATEGY (gridBot or marketMaker; default from file, else gridBot)
    PROTON_API_ROOT (default: https://dex.api.mainnet.metalx.com/dex)
    PROTON_LIGHT_API_ROOT (default: https://lightapi.eosamsterdam.net/api)
    PROTON_CHAIN (default: proton; protontest for testnet)
    PROTON_PERMISSION (default: active)
    PROTON_SIGNER_URL (required unless PROTON_DRY_RUN is set)
    PROTON_SIGNER_TOKEN (optional bearer token for the signer service)
    PROTON_DRY_RUN (default: false)
    PROTON_TRADE_INTERVAL_MS (default: 5000)
    PROTON_BATCH_SIZE (default: 30)
    PROTON_BATCH_DELAY_SECONDS (default: 2)
    PROTON_CANCEL_ON_EXIT (default: false)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from dex_errors import ConfigurationError, PrecisionError
from dex_models import OrderSideFilter, ReferenceBase
from precision import to_decimal

GRID_BOT = "gridBot"
MARKET_MAKER = "marketMaker"
STRATEGIES = (GRID_BOT, MARKET_MAKER)

DEFAULT_CONFIG_FILE = "config/default.json"
DEFAULT_API_ROOT = "https://dex.api.mainnet.metalx.com/dex"
DEFAULT_LIGHT_API_ROOT = "https://lightapi.eosamsterdam.net/api"


@dataclass(frozen=True, slots=True)
class GridPairConfig:
    symbol: str
    upper_limit: Decimal
    lower_limit: Decimal
    grid_levels: int
    bid_amount_per_level: Decimal
    kind: str = GRID_BOT


@dataclass(frozen=True, slots=True)
class MarketMakerPairConfig:
    symbol: str
    grid_levels: int
    grid_interval: Decimal
    reference_base: ReferenceBase
    order_side: OrderSideFilter
    bid_amount_per_level: Decimal
    kind: str = MARKET_MAKER


PairConfig = Union[GridPairConfig, MarketMakerPairConfig]


@dataclass(slots=True)
class BotConfig:
    username: str
    strategy: str
    pairs: list[PairConfig] = field(default_factory=list)
    api_root: str = DEFAULT_API_ROOT
    light_api_root: str = DEFAULT_LIGHT_API_ROOT
    chain: str = "proton"
    permission: str = "active"
    signer_url: Optional[str] = None
    signer_token: Optional[str] = None
    dry_run: bool = False
    trade_interval_seconds: float = 5.0
    batch_size: int = 30
    batch_delay_seconds: float = 2.0
    cancel_open_orders_on_exit: bool = False


class _Fields:
    """Collects one problem per missing or malformed field."""

    def __init__(self, raw: Mapping[str, Any], label: str, problems: list[str]):
        self.raw = raw
        self.label = label
        self.problems = problems

    def value(self, *names: str) -> Any:
        for name in names:
            value = self.raw.get(name)
            if value is not None and value != "":
                return value
        self.problems.append(f"{self.label}: missing option '{names[0]}'")
        return None

    def decimal(self, *names: str) -> Optional[Decimal]:
        value = self.value(*names)
        if value is None:
            return None
        try:
            return to_decimal(value)
        except PrecisionError:
            self.problems.append(f"{self.label}: option '{names[0]}' must be numeric, got {value!r}")
            return None

    def integer(self, *names: str) -> Optional[int]:
        number = self.decimal(*names)
        if number is None:
            return None
        if number != number.to_integral_value():
            self.problems.append(f"{self.label}: option '{names[0]}' must be a whole number, got {number}")
            return None
        return int(number)

    def choice(self, enum_type: Any, *names: str) -> Any:
        value = self.value(*names)
        if value is None:
            return None
        try:
            return enum_type(str(value).strip().upper())
        except ValueError:
            allowed = ", ".join(member.value for member in enum_type)
            self.problems.append(f"{self.label}: option '{names[0]}' must be one of {allowed}, got {value!r}")
            return None


def _pair_label(raw: Mapping[str, Any], strategy: str, index: int) -> str:
    symbol = raw.get("symbol")
    return f"{strategy} pair {symbol}" if symbol else f"{strategy} pair with index {index}"


def parse_grid_pair(raw: Mapping[str, Any], index: int, problems: list[str]) -> Optional[GridPairConfig]:
    fields = _Fields(raw, _pair_label(raw, GRID_BOT, index), problems)
    before = len(problems)
    symbol = fields.value("symbol")
    upper = fields.decimal("upperLimit")
    lower = fields.decimal("lowerLimit")
    levels = fields.integer("gridLevels")
    amount = fields.decimal("bidAmountPerLevel")
    if len(problems) > before:
        return None

    label = fields.label
    if levels < 1:
        problems.append(f"{label}: gridLevels must be at least 1")
    if lower <= 0 or upper <= lower:
        problems.append(f"{label}: expected 0 < lowerLimit < upperLimit, got {lower} / {upper}")
    if amount <= 0:
        problems.append(f"{label}: bidAmountPerLevel must be positive")
    if len(problems) > before:
        return None
    return GridPairConfig(
        symbol=str(symbol),
        upper_limit=upper,
        lower_limit=lower,
        grid_levels=levels,
        bid_amount_per_level=amount,
    )


def parse_market_maker_pair(
    raw: Mapping[str, Any], index: int, problems: list[str]
) -> Optional[MarketMakerPairConfig]:
    fields = _Fields(raw, _pair_label(raw, MARKET_MAKER, index), problems)
    before = len(problems)
    symbol = fields.value("symbol")
    levels = fields.integer("gridLevels")
    interval = fields.decimal("gridInterval")
    base = fields.choice(ReferenceBase, "base", "referenceBase")
    side = fields.choice(OrderSideFilter, "orderSide")
    amount = fields.decimal("bidAmountPerLevel")
    if len(problems) > before:
        return None

    label = fields.label
    if levels < 1:
        problems.append(f"{label}: gridLevels must be at least 1")
    if interval <= 0 or interval * levels >= 1:
        problems.append(f"{label}: gridInterval must be positive and gridInterval * gridLevels below 1")
    if amount <= 0:
        problems.append(f"{label}: bidAmountPerLevel must be positive")
    if len(problems) > before:
        return None
    return MarketMakerPairConfig(
        symbol=str(symbol),
        grid_levels=levels,
        grid_interval=interval,
        reference_base=base,
        order_side=side,
        bid_amount_per_level=amount,
    )


def parse_pairs(strategy: str, raw_pairs: Any) -> list[PairConfig]:
    if strategy not in STRATEGIES:
        raise ConfigurationError([f"No strategy named {strategy} found, expected one of {', '.join(STRATEGIES)}"])
    if not isinstance(raw_pairs, list) or not raw_pairs:
        raise ConfigurationError([f"{strategy}: 'pairs' must be a non-empty list"])

    parser = parse_grid_pair if strategy == GRID_BOT else parse_market_maker_pair
    problems: list[str] = []
    pairs: list[PairConfig] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_pairs):
        if not isinstance(raw, Mapping):
            problems.append(f"{strategy} pair with index {index}: expected an object")
            continue
        pair = parser(raw, index, problems)
        if pair is None:
            continue
        if pair.symbol in seen:
            problems.append(f"{strategy} pair {pair.symbol}: configured more than once")
            continue
        seen.add(pair.symbol)
        pairs.append(pair)
    if problems:
        raise ConfigurationError(problems)
    return pairs


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _file_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return _env_bool(value, default)
    return bool(value)


def read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigurationError([f"Config file {path} not found"])
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError([f"Config file {path} is not valid JSON: {exc}"]) from exc
    if not isinstance(data, dict):
        raise ConfigurationError([f"Config file {path} must contain a JSON object"])
    # Older config files nest everything under "bot".
    if isinstance(data.get("bot"), dict):
        data = data["bot"]
    return data


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> BotConfig:
    env = os.environ if environ is None else environ
    config_path = path or Path(env.get("PROTON_CONFIG_FILE", DEFAULT_CONFIG_FILE))
    data = read_config_file(config_path)
    rpc = data.get("rpc") if isinstance(data.get("rpc"), dict) else {}

    problems: list[str] = []
    username = env.get("PROTON_USERNAME") or data.get("username")
    if not username:
        problems.append("Set PROTON_USERNAME (or 'username' in the config file)")

    strategy = env.get("PROTON_STRATEGY") or data.get("strategy") or GRID_BOT
    dry_run = _env_bool(env.get("PROTON_DRY_RUN"), _file_bool(data.get("dryRun"), False))
    signer_url = env.get("PROTON_SIGNER_URL") or rpc.get("signerUrl")
    if not signer_url and not dry_run:
        problems.append("Set PROTON_SIGNER_URL or enable PROTON_DRY_RUN")

    def number(env_name: str, file_value: Any, default: str) -> Decimal:
        raw = env.get(env_name)
        if raw is None or raw == "":
            raw = file_value if file_value is not None else default
        try:
            value = to_decimal(raw)
        except PrecisionError:
            problems.append(f"{env_name} must be numeric, got {raw!r}")
            return Decimal(default)
        if value < 0:
            problems.append(f"{env_name} must not be negative, got {raw!r}")
            return Decimal(default)
        return value

    interval_ms = number("PROTON_TRADE_INTERVAL_MS", data.get("tradeIntervalMS"), "5000")
    batch_size = number("PROTON_BATCH_SIZE", data.get("batchSize"), "30")
    batch_delay = number("PROTON_BATCH_DELAY_SECONDS", data.get("batchDelaySeconds"), "2")
    if batch_size < 1 or batch_size != batch_size.to_integral_value():
        problems.append(f"PROTON_BATCH_SIZE must be a positive whole number, got {batch_size}")

    pairs: list[PairConfig] = []
    section = data.get(strategy) if isinstance(data.get(strategy), dict) else {}
    try:
        pairs = parse_pairs(strategy, section.get("pairs"))
    except ConfigurationError as exc:
        problems.extend(exc.problems)

    if problems:
        raise ConfigurationError(problems)

    return BotConfig(
        username=str(username),
        strategy=strategy,
        pairs=pairs,
        api_root=(env.get("PROTON_API_ROOT") or rpc.get("apiRoot") or DEFAULT_API_ROOT).rstrip("/"),
        light_api_root=(
            env.get("PROTON_LIGHT_API_ROOT") or rpc.get("lightApiRoot") or DEFAULT_LIGHT_API_ROOT
        ).rstrip("/"),
        chain=env.get("PROTON_CHAIN") or data.get("chain") or "proton",
        permission=env.get("PROTON_PERMISSION") or rpc.get("privateKeyPermission") or "active",
        signer_url=signer_url,
        signer_token=env.get("PROTON_SIGNER_TOKEN") or None,
        dry_run=dry_run,
        trade_interval_seconds=float(interval_ms) / 1000.0,
        batch_size=int(batch_size),
        batch_delay_seconds=float(batch_delay),
        cancel_open_orders_on_exit=_env_bool(
            env.get("PROTON_CANCEL_ON_EXIT"), _file_bool(data.get("cancelOpenOrdersOnExit"), False)
        ),
    )

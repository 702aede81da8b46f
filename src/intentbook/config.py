from __future__ import annotations

import json
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_UNIMIND_SUPPORTED_TOKENS = [
    "0xaf88d065e77c8cc2239327c5edb3a432268e5831",  # USDC
    "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9",  # USDT
    "0x6985884c4392d348587b19cb9eaaf157f13271cd",  # ZRO
    "0x912ce59144191c1204e64559fe8253a0e49e6548",  # ARB
    "0x82af49447d8a07e3bd95bd0d56f35241523fbab1",  # WETH
    "0x11cdb42b0eb46d95f990bedd4695a6e3fa034978",  # CRV
    "0x9623063377ad1b27544c965ccd7342f7ea7e88c7",  # GRT
    "0xfc5a1a6eb076a2c7ad06ed22c90d7e710e35ad0a",  # GMX
    "0xba5ddd1f9d7f570dc94a51479a000e3bce967196",  # AAVE
    "0x0c880f6761f1af8d9aa9c466984b80dab9a8c9e8",  # PENDLE
    "0xf97f4df75117a78c1a5a0dbb814af92458539fb4",  # LINK
    "0x2f2a2543b76a4166549f7aab2e75bef0aefc5b0f",  # WBTC
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    state_db_path: str = Field(default="intentbook.db", alias="STATE_DB_PATH")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    max_query_page_size: int = Field(default=50, alias="MAX_QUERY_PAGE_SIZE")

    track_insufficient_funds: bool = Field(default=True, alias="TRACK_INSUFFICIENT_FUNDS")
    status_conflict_max_attempts: int = Field(default=3, alias="STATUS_CONFLICT_MAX_ATTEMPTS")

    order_validator_url: str = Field(default="http://localhost:8545", alias="ORDER_VALIDATOR_URL")
    order_validator_timeout_seconds: float = Field(
        default=10.0, alias="ORDER_VALIDATOR_TIMEOUT_SECONDS"
    )

    unimind_algorithm: str = Field(default="price_impact", alias="UNIMIND_ALGORITHM")
    unimind_algorithm_version: int = Field(default=3, alias="UNIMIND_ALGORITHM_VERSION")
    unimind_update_threshold: int = Field(default=25, alias="UNIMIND_UPDATE_THRESHOLD")
    unimind_lookback_minutes: int = Field(default=15, alias="UNIMIND_LOOKBACK_MINUTES")
    unimind_lookback_limit: int = Field(default=2000, alias="UNIMIND_LOOKBACK_LIMIT")
    unimind_chain_id: int = Field(default=42161, alias="UNIMIND_CHAIN_ID")
    unimind_sample_percent: int = Field(default=66, alias="UNIMIND_SAMPLE_PERCENT")
    unimind_large_price_impact_threshold: float = Field(
        default=5.0, alias="UNIMIND_LARGE_PRICE_IMPACT_THRESHOLD"
    )
    unimind_max_tau_bps: float = Field(default=25.0, alias="UNIMIND_MAX_TAU_BPS")
    unimind_supported_tokens: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_UNIMIND_SUPPORTED_TOKENS),
        alias="UNIMIND_SUPPORTED_TOKENS",
    )

    @field_validator("unimind_supported_tokens", mode="before")
    def parse_supported_tokens(cls, value: str | list[str]) -> list[str]:
        items: list[object]
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            if raw.startswith("["):
                parsed = json.loads(raw)
                if not isinstance(parsed, list):
                    raise ValueError("UNIMIND_SUPPORTED_TOKENS JSON value must be a list")
                items = parsed
            else:
                items = raw.split(",")
        else:
            items = value

        normalized: list[str] = []
        seen: set[str] = set()
        for item in items:
            candidate = str(item).strip().strip('"').strip("'").strip().lower()
            if not candidate or candidate in seen:
                continue
            seen.add(candidate)
            normalized.append(candidate)
        return normalized

    @field_validator("unimind_algorithm")
    def validate_unimind_algorithm(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"price_impact", "batched"}:
            raise ValueError("UNIMIND_ALGORITHM must be one of: price_impact, batched")
        return normalized

    @field_validator("max_query_page_size", "unimind_lookback_limit", "status_conflict_max_attempts")
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be > 0")
        return value

    @field_validator("unimind_update_threshold", "unimind_lookback_minutes")
    def validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must be >= 0")
        return value

    @field_validator("unimind_sample_percent")
    def validate_sample_percent(cls, value: int) -> int:
        if value < 0 or value > 100:
            raise ValueError("UNIMIND_SAMPLE_PERCENT must be within [0, 100]")
        return value

    @field_validator("unimind_large_price_impact_threshold", "unimind_max_tau_bps")
    def validate_non_negative_float(cls, value: float) -> float:
        if value < 0:
            raise ValueError("value must be >= 0")
        return value

    @field_validator("order_validator_timeout_seconds")
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("ORDER_VALIDATOR_TIMEOUT_SECONDS must be > 0")
        return value

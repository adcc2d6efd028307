import json
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    otel_sample_ratio: float = 1.0
    app_name: str = "SBT Rewards"
    database_url: str = "sqlite+aiosqlite:///./sbt_rewards.db"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Secondary flat key-value namespace mirrored on every ledger write
    ledger_mirror_backend: Literal["file", "memory"] = "file"
    ledger_mirror_path: str = "./.ledger-mirror"

    # Chain access
    chain_id: int = 80002
    rpc_url: str = "https://rpc-amoy.polygon.technology"
    rpc_timeout_seconds: float = 10.0
    signer_address: str | None = None
    # "80002=0xabc...,137=0xdef..." or a JSON object keyed by chain id
    sbt_contract_addresses: Annotated[dict[int, str], NoDecode] = Field(default_factory=dict)

    @field_validator("sbt_contract_addresses", mode="before")
    @classmethod
    def _parse_contract_addresses(cls, value: object) -> dict[int, str]:
        if value is None or value == "":
            return {}
        if isinstance(value, str) and value.lstrip().startswith("{"):
            value = json.loads(value)
        if isinstance(value, str):
            parsed: dict[int, str] = {}
            for pair in value.split(","):
                if "=" not in pair:
                    continue
                chain, address = pair.split("=", 1)
                parsed[int(chain.strip())] = address.strip()
            return parsed
        if isinstance(value, dict):
            return {int(key): str(address) for key, address in value.items()}
        return {}

    # Content-addressable storage (Pinata)
    pinata_api_key: str = ""
    pinata_api_secret: str = ""
    pinata_jwt: str = ""
    pinata_base_url: str = "https://api.pinata.cloud"
    pinata_gateway_url: str = "https://gateway.pinata.cloud/ipfs"
    pinata_timeout_seconds: float = 30.0

    # Minting pipeline
    mint_gas_margin: float = 1.2
    mint_default_gas_units: int = 300_000
    mint_retry_gas_limit: int = 250_000
    mint_retry_delay_seconds: float = 3.0
    mint_receipt_timeout_seconds: float = 120.0
    mint_receipt_poll_interval_seconds: float = 2.0

    @field_validator("mint_gas_margin")
    @classmethod
    def _validate_gas_margin(cls, value: float) -> float:
        if not 1.2 <= value <= 1.3:
            raise ValueError("mint_gas_margin must be between 1.2 and 1.3")
        return value

    # Local API security
    merchant_api_key: str = ""


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()

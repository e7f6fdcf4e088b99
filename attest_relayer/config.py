"""
Configuration management for the attestation relayer.

All settings can be overridden via environment variables or a .env file.
Defaults follow the reference deployment: Uniswap V3 USDC/ETH pool Swap
events on Ethereum mainnet, attested to Sepolia.
"""

import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

_TOPIC_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class ChainConfig(BaseModel):
    """Configuration for the EVM node connection."""

    rpc_url: str = "https://1rpc.io/eth"
    timeout: float = 30.0


class ProverConfig(BaseModel):
    """Configuration for the proving service."""

    url: str = "http://localhost:33247"
    timeout: float = 600.0


class AttestationConfig(BaseModel):
    """Configuration for the attestation network."""

    url: str = "https://appsdkv3.brevis.network"
    timeout: float = 30.0
    poll_interval: float = 5.0
    finality_timeout: float = 1800.0


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Source chain
    rpc_url: str = Field(default="https://1rpc.io/eth", description="EVM JSON-RPC URL")
    rpc_timeout_seconds: float = Field(default=30.0, gt=0)
    start_block: int = Field(default=0, ge=0, description="First block to scan")
    confirmations: int = Field(
        default=0, ge=0, description="Blocks to stay behind the chain head"
    )
    max_block_span: int = Field(default=2000, gt=0, description="Max blocks per pass")
    receipt_concurrency: int = Field(default=8, gt=0)

    # Watched event
    contract_address: str = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"
    event_topic: str = "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"
    field_index: int = Field(default=4, ge=0, description="ABI field proven per log")
    field_is_topic: bool = False

    # Request shaping
    max_receipts_per_request: int = Field(default=32, gt=0)
    require_complete_batch: bool = Field(
        default=False,
        description="Fail the pass instead of proving a subset when a receipt fetch fails",
    )

    # Prover
    prover_url: str = "http://localhost:33247"
    prover_timeout_seconds: float = Field(default=600.0, gt=0)

    # Attestation network
    attestation_url: str = "https://appsdkv3.brevis.network"
    attestation_timeout_seconds: float = Field(default=30.0, gt=0)
    src_chain_id: int = 1
    dst_chain_id: int = 11155111
    fee: int = Field(default=0, ge=0)
    refund_address: str = ""
    dst_contract_address: str = "0xCBa0CF440e383E6C6cc4484904449BAe9dB312F9"
    finality_poll_seconds: float = Field(default=5.0, gt=0)
    finality_timeout_seconds: float = Field(default=1800.0, gt=0)

    # Scheduling
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    pass_timeout_seconds: float = Field(default=3600.0, gt=0)

    # Persistence ("" keeps the cursor in memory only)
    database_url: str = "sqlite:///./attest_relayer.db"

    # Status server (disabled when http_port is unset)
    http_host: str = "127.0.0.1"
    http_port: Optional[int] = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("contract_address", "dst_contract_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        # Mixed-case input is normalized rather than checksum-verified
        if not Web3.is_address(value.lower()):
            raise ValueError(f"invalid EVM address: {value}")
        return Web3.to_checksum_address(value)

    @field_validator("refund_address")
    @classmethod
    def _check_refund_address(cls, value: str) -> str:
        if value and not Web3.is_address(value.lower()):
            raise ValueError(f"invalid refund address: {value}")
        return value

    @field_validator("event_topic")
    @classmethod
    def _check_topic(cls, value: str) -> str:
        if not _TOPIC_RE.match(value):
            raise ValueError("event_topic must be a 0x-prefixed 32-byte hex string")
        return value.lower()

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    def chain_config(self) -> ChainConfig:
        return ChainConfig(rpc_url=self.rpc_url, timeout=self.rpc_timeout_seconds)

    def prover_config(self) -> ProverConfig:
        return ProverConfig(url=self.prover_url, timeout=self.prover_timeout_seconds)

    def attestation_config(self) -> AttestationConfig:
        return AttestationConfig(
            url=self.attestation_url,
            timeout=self.attestation_timeout_seconds,
            poll_interval=self.finality_poll_seconds,
            finality_timeout=self.finality_timeout_seconds,
        )


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """Load settings from the environment, optionally from a given .env file."""
    return Settings(_env_file=env_path) if env_path else Settings()

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="SNIPE_", extra="allow")

    # Node
    rpc_ws_url: str = "ws://localhost:8546"
    private_key: str | None = None  # hex; the CLI flag takes precedence

    # Exchange (PancakeSwap V2 on BNB Smart Chain)
    router_address: str = "0x10ED43C718714eb63d5aA57B78B54704E256024E"
    factory_address: str = "0xcA143Ce32Fe78f0f4019d5d551e6aEc8B1e3EfE8"
    wrapped_native_address: str = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"  # WBNB
    native_symbol: str = "BNB"

    # Swap policy
    slippage_bps: int = 5000  # 50%: min out is half the quote
    gas_limit: int = 300_000
    tx_deadline_seconds: int = 1200
    fallback_gas_price_wei: int = 1_000_000_000  # 1 gwei

    # Settlement wait; None or 0 waits forever
    settlement_timeout_sec: float | None = 1200.0

    # Logging
    log_level: str = "INFO"

    @field_validator("private_key", "settlement_timeout_sec", mode="before")
    @classmethod
    def _empty_str_to_none(cls, v):
        if v == "":
            return None
        return v

    @field_validator("router_address", "factory_address", "wrapped_native_address")
    @classmethod
    def _checksum(cls, v: str) -> str:
        if not Web3.is_address(v):
            raise ValueError(f"not an address: {v}")
        return Web3.to_checksum_address(v)

    @field_validator("slippage_bps")
    @classmethod
    def _slippage_range(cls, v: int) -> int:
        if not 0 <= v <= 10_000:
            raise ValueError("slippage_bps must be within 0..10000")
        return v

    @property
    def settlement_timeout(self) -> float | None:
        if not self.settlement_timeout_sec:
            return None
        return float(self.settlement_timeout_sec)


"""
Application settings (Pydantic Settings).
"""
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env next to backend/ (parent of driftbottle/)
_env_path = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    database_url: str = "sqlite:///./driftbottle.db"
    # Ledger: RPC_URL and CONTRACT_ADDRESS in .env (Sepolia by default)
    rpc_url: str = "https://ethereum-sepolia-rpc.publicnode.com"
    contract_address: str = "0xac7f0df29dca546f30ed1bf8eac46a53fc41b7c4"
    chain_id: int = 11155111
    # Optional: when set, writes are signed locally instead of by the node's wallet
    private_key: str = ""
    request_timeout_seconds: float = 30.0

    confirmations_required: int = 1
    inclusion_timeout_seconds: float = 120.0
    inclusion_poll_interval_seconds: float = 4.0
    counter_poll_interval_seconds: float = 5.0

    history_store_name: str = "bottle-history"
    max_content_length: int = 500
    ledger_scan_depth: int = 50

    class Config:
        env_file = _env_path
        extra = "ignore"

    @field_validator("rpc_url", "contract_address", "private_key", mode="after")
    @classmethod
    def strip_ledger(cls, v: str) -> str:
        return (v or "").strip()


settings = Settings()

"""
Configuration management for the Diamond Upgrader.
Handles environment variables and settings for deploying and upgrading the protocol diamond.
"""

from typing import Any, Dict, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ethers.js always suggests this tip, it does not vary per block
TIP_SUGGESTION_WEI = 1_500_000_000


class Settings(BaseSettings):
    """Upgrader settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Diamond Upgrader"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Operator access to the HTTP surface
    OPERATOR_TOKEN: Optional[str] = None

    # Blockchain Configuration
    NETWORK: str = "localhost"
    RPC_URL: str = "http://127.0.0.1:8545"
    CHAIN_ID: Optional[int] = None  # read from the node when unset
    DEPLOYER_PRIVATE_KEY: Optional[str] = None
    ADMIN_ADDRESS: Optional[str] = None

    # Transaction controls
    CONFIRMATIONS: int = 1
    TIP_MULTIPLIER: int = 1
    TX_TIMEOUT_SECONDS: int = 120
    DEFAULT_GAS_LIMIT: int = 8_000_000

    # Read retries (network/node errors only)
    CHAIN_READ_MAX_RETRIES: int = 3
    CHAIN_READ_RETRY_DELAY: float = 0.5

    # Compiled contracts and persisted addresses
    ARTIFACTS_DIR: str = "artifacts/contracts"
    BUILD_INFO_DIR: str = "artifacts/build-info"
    ADDRESSES_DIR: str = "addresses"
    INTERFACES_CONFIG_PATH: str = "config/supported-interfaces.json"

    # Protocol
    PROTOCOL_VERSION: str = "0.0.0"
    DIAMOND_CONTRACT_NAME: str = "ProtocolDiamond"
    ACCESS_CONTROLLER_NAME: str = "AccessController"
    INITIALIZATION_FACET_NAME: str = "ProtocolInitializationHandlerFacet"

    # Collision handling: "fail" aborts, "interactive" prompts on the terminal
    COLLISION_POLICY: str = "fail"
    COLLISION_PROMPT_MAX_ATTEMPTS: int = 3

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"

    @property
    def max_priority_fee_per_gas(self) -> int:
        """Priority fee used for every transaction sent by the upgrader."""
        return TIP_SUGGESTION_WEI * self.TIP_MULTIPLIER

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment setting."""
        allowed_envs = ["development", "test", "staging", "production", "upgrade-test"]
        if v not in allowed_envs:
            raise ValueError(f"Environment must be one of {allowed_envs}")
        return v

    @field_validator("COLLISION_POLICY")
    @classmethod
    def validate_collision_policy(cls, v):
        allowed = ["fail", "interactive"]
        if v not in allowed:
            raise ValueError(f"Collision policy must be one of {allowed}")
        return v

    @field_validator("TIP_MULTIPLIER", "CONFIRMATIONS", "CHAIN_READ_MAX_RETRIES")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    def get_network_config(self) -> Dict[str, Any]:
        """Get the active network configuration (without secrets)."""
        return {
            "network": self.NETWORK,
            "rpc_url": self.RPC_URL,
            "chain_id": self.CHAIN_ID,
            "admin_address": self.ADMIN_ADDRESS,
            "confirmations": self.CONFIRMATIONS,
            "max_priority_fee_per_gas": self.max_priority_fee_per_gas,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Create global settings instance
settings = Settings()


def is_production() -> bool:
    """Check if running in production environment."""
    return settings.ENVIRONMENT == "production"

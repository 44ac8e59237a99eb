"""
Molted Configuration Management
Uses pydantic-settings for type-safe environment variable loading
"""

import json
import logging
from pathlib import Path
from typing import Dict, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from molted.errors import ConfigError

NetworkName = Literal["base", "base-sepolia"]

EVM_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"


class NetworkInfo(BaseModel):
    """A supported chain and its USDC contract binding"""
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    chain_id: int
    usdc_address: str
    explorer: str
    rpc_url: str
    cdp_network_id: str
    eth_faucet: Optional[str] = None
    usdc_faucet: Optional[str] = None

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer}/tx/{tx_hash}"


NETWORKS: Dict[str, NetworkInfo] = {
    "base": NetworkInfo(
        name="base",
        display_name="Base",
        chain_id=8453,
        usdc_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        explorer="https://basescan.org",
        rpc_url="https://mainnet.base.org",
        cdp_network_id="base-mainnet",
    ),
    "base-sepolia": NetworkInfo(
        name="base-sepolia",
        display_name="Base Sepolia",
        chain_id=84532,
        usdc_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        explorer="https://sepolia.basescan.org",
        rpc_url="https://sepolia.base.org",
        cdp_network_id="base-sepolia",
        eth_faucet="https://www.alchemy.com/faucets/base-sepolia",
        usdc_faucet="https://faucet.circle.com/",
    ),
}


def get_network_info(network: str) -> NetworkInfo:
    """Look up a network by name"""
    try:
        return NETWORKS[network]
    except KeyError:
        raise ConfigError(f"Unknown network: {network}") from None


def get_network_by_chain_id(chain_id: int) -> Optional[NetworkInfo]:
    """Look up a network by numeric chain id"""
    for info in NETWORKS.values():
        if info.chain_id == chain_id:
            return info
    return None


class MarketplaceConfig(BaseSettings):
    """Configuration for the Marketplace API server"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    marketplace_host: str = Field(default="0.0.0.0", description="Host to bind the server to")
    marketplace_port: int = Field(default=3001, description="Port to bind the server to")

    # Network Configuration
    x402_network: NetworkName = Field(default="base-sepolia")
    alchemy_rpc_url: str = Field(default="", description="Overrides the network's public RPC")

    # x402 Protocol
    x402_facilitator_url: str = Field(default="https://x402.org/facilitator")
    payment_verification_retries: int = Field(default=3, ge=1)
    payment_verification_backoff: float = Field(default=0.5, ge=0, description="Seconds between retries")
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # Database
    database_backend: Literal["supabase", "memory"] = Field(default="supabase")
    supabase_url: str = Field(default="")
    supabase_service_role_key: str = Field(default="")

    # CORS Configuration
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    # Development
    debug: bool = Field(default=False)
    reload: bool = Field(default=False)

    @property
    def network(self) -> NetworkInfo:
        return get_network_info(self.x402_network)

    @property
    def rpc_url(self) -> str:
        return self.alchemy_rpc_url or self.network.rpc_url


class ClientConfig(BaseSettings):
    """Environment configuration for the molted CLI"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    molted_api_key: str = Field(default="", description="Agent API key (ab_...)")
    molted_private_key: str = Field(default="", description="Private key for the local wallet")
    molted_rpc_url: str = Field(default="", description="Overrides the network's public RPC")

    # Coinbase Developer Platform
    cdp_api_key_name: str = Field(default="")
    cdp_api_key_private_key: str = Field(default="")

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    transfer_confirmation_timeout: int = Field(default=120, description="Seconds to wait for a transfer to be mined")

    @field_validator("molted_private_key")
    @classmethod
    def validate_private_key(cls, v):
        if v and not v.startswith("0x"):
            return f"0x{v}"
        return v

    def require_api_key(self) -> str:
        if not self.molted_api_key:
            raise ConfigError(
                "MOLTED_API_KEY environment variable not set. "
                "Set it with: export MOLTED_API_KEY=your_api_key"
            )
        return self.molted_api_key

    @property
    def cdp_credentials(self) -> Optional[tuple[str, str]]:
        if not self.cdp_api_key_name or not self.cdp_api_key_private_key:
            return None
        return self.cdp_api_key_name, self.cdp_api_key_private_key


# ===== PERSISTED CLIENT CONFIG =====

CONFIG_DIR = ".molted"
CONFIG_FILE = "config.json"


class PersistedConfig(BaseModel):
    """Agent identity and wallet selection written by `molted init`"""
    version: Literal[1] = 1
    api_url: str
    agent_id: str
    agent_name: str
    api_key_prefix: str
    wallet_type: Literal["cdp", "local"]
    wallet_address: str = Field(pattern=EVM_ADDRESS_PATTERN)
    wallet_id: Optional[str] = None  # CDP wallet ID
    network: NetworkName

    @property
    def network_info(self) -> NetworkInfo:
        return get_network_info(self.network)


def get_config_path(base_dir: Optional[Path] = None) -> Path:
    return (base_dir or Path.cwd()) / CONFIG_DIR / CONFIG_FILE


def load_persisted_config(base_dir: Optional[Path] = None) -> PersistedConfig:
    """Load and validate ./.molted/config.json"""
    path = get_config_path(base_dir)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError("Not initialized. Run 'molted init' to create a new agent.") from None
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load config: {e}") from e

    try:
        return PersistedConfig.model_validate(data)
    except PydanticValidationError as e:
        issues = ", ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ConfigError(f"Invalid config file: {issues}") from e


def save_persisted_config(config: PersistedConfig, base_dir: Optional[Path] = None) -> Path:
    path = get_config_path(base_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(config.model_dump_json(indent=2, exclude_none=True) + "\n", encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to save config: {e}") from e
    return path


# ===== LOGGING =====

def configure_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """Configure structlog processors for an entry point"""
    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
    )


# Singleton instances
_marketplace_config: MarketplaceConfig | None = None
_client_config: ClientConfig | None = None


def get_marketplace_config() -> MarketplaceConfig:
    """Get or create marketplace configuration singleton"""
    global _marketplace_config
    if _marketplace_config is None:
        _marketplace_config = MarketplaceConfig()
    return _marketplace_config


def get_client_config() -> ClientConfig:
    """Get or create CLI configuration singleton"""
    global _client_config
    if _client_config is None:
        _client_config = ClientConfig()
    return _client_config

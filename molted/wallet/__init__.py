"""
Wallet providers for paying x402 requirements
"""

from typing import Optional

from molted.config import ClientConfig, NetworkName, PersistedConfig, get_network_info
from molted.errors import ConfigError
from molted.wallet.base import ERC20_ABI, SendUSDCParams, WalletProvider, WalletType
from molted.wallet.cdp_provider import CDPWalletProvider
from molted.wallet.local_provider import LocalWalletProvider

__all__ = [
    "CDPWalletProvider",
    "ERC20_ABI",
    "LocalWalletProvider",
    "SendUSDCParams",
    "WalletProvider",
    "WalletType",
    "create_wallet",
    "create_wallet_from_config",
]


async def create_wallet(
    wallet_type: WalletType,
    network: NetworkName,
    client_config: ClientConfig,
    wallet_id: Optional[str] = None,
) -> WalletProvider:
    """
    Build and initialize a wallet provider.
    For cdp without a wallet_id a new remote wallet is provisioned.

    Raises:
        ConfigError: credentials for the requested wallet type are missing
    """
    network_info = get_network_info(network)

    if wallet_type == "cdp":
        credentials = client_config.cdp_credentials
        if not credentials:
            raise ConfigError(
                "CDP credentials not found. Set CDP_API_KEY_NAME and "
                "CDP_API_KEY_PRIVATE_KEY environment variables."
            )
        provider = CDPWalletProvider(
            api_key_name=credentials[0],
            api_key_private_key=credentials[1],
            network=network_info,
            wallet_id=wallet_id,
            confirmation_timeout=client_config.transfer_confirmation_timeout,
        )
    elif wallet_type == "local":
        if not client_config.molted_private_key:
            raise ConfigError(
                "Local wallet private key not found. Set MOLTED_PRIVATE_KEY environment variable."
            )
        try:
            provider = LocalWalletProvider(
                private_key=client_config.molted_private_key,
                network=network_info,
                rpc_url=client_config.molted_rpc_url or None,
                timeout=client_config.http_timeout_seconds,
                confirmation_timeout=client_config.transfer_confirmation_timeout,
            )
        except Exception as e:
            raise ConfigError(f"Invalid MOLTED_PRIVATE_KEY: {e}") from e
    else:
        raise ConfigError(f"Unknown wallet type: {wallet_type}")

    await provider.initialize()
    return provider


async def create_wallet_from_config(
    config: PersistedConfig,
    client_config: ClientConfig,
) -> WalletProvider:
    """Create the wallet recorded in .molted/config.json"""
    return await create_wallet(config.wallet_type, config.network, client_config, config.wallet_id)

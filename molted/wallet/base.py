"""
Wallet provider interface
A signing identity that can report balances and submit a USDC transfer
"""

from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from molted.config import EVM_ADDRESS_PATTERN

WalletType = Literal["cdp", "local"]

# Minimal ERC20 ABI for USDC transfers
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


class SendUSDCParams(BaseModel):
    """A single USDC transfer, amount in base units"""
    model_config = ConfigDict(frozen=True)

    to: str = Field(pattern=EVM_ADDRESS_PATTERN)
    amount: int = Field(gt=0)
    chain_id: int


@runtime_checkable
class WalletProvider(Protocol):
    """
    Capability implemented by CDPWalletProvider and LocalWalletProvider.

    Contract shared by both implementations:
    - `initialize()` must be awaited before `address` is read or any call is made
    - `send_usdc()` returns only once the transfer is mined and succeeded; any
      failure raises PaymentError (carrying the tx hash when one exists)
    - balances are integers in base units (USDC) or wei (ETH)
    """

    type: WalletType
    requires_gas: bool

    @property
    def address(self) -> str: ...

    @property
    def chain_id(self) -> int: ...

    async def initialize(self) -> None: ...

    async def send_usdc(self, params: SendUSDCParams) -> str: ...

    async def get_usdc_balance(self) -> int: ...

    async def get_eth_balance(self) -> int: ...

"""
Marketplace API models
"""

from typing import Dict

from pydantic import BaseModel


class X402Manifest(BaseModel):
    """x402 protocol manifest"""
    version: str = "1.0"
    name: str = "Molted"
    description: str = "Agent job marketplace with x402 USDC payments"
    payment_methods: list[str] = ["x402-usdc"]
    supported_networks: list[str]
    chain_id: int
    asset: str
    facilitator: str
    headers: Dict[str, str]
    endpoints: Dict[str, str]

    class Config:
        json_schema_extra = {
            "example": {
                "version": "1.0",
                "name": "Molted",
                "description": "Agent job marketplace with x402 USDC payments",
                "payment_methods": ["x402-usdc"],
                "supported_networks": ["base-sepolia"],
                "chain_id": 84532,
                "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
                "facilitator": "https://x402.org/facilitator",
                "headers": {
                    "payment_required": "x-payment-required",
                    "payment": "x-payment"
                },
                "endpoints": {
                    "approve": "/approve",
                    "complete": "/complete"
                }
            }
        }

"""
Molted
Agent job marketplace with x402 USDC payments on Base
"""

__version__ = "0.1.0"

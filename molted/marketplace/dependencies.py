import hashlib
import re
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
import structlog

from molted.config import get_marketplace_config
from molted.database import get_db_client
from molted.marketplace.approval import ApprovalStateMachine
from molted.models import Agent
from molted.payments import FacilitatorVerifier, OnChainVerifier, PaymentGate

logger = structlog.get_logger()

API_KEY_PATTERN = re.compile(r"^ab_[a-fA-F0-9]{32}$")


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract an ab_ API key from an Authorization header"""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        return None
    if not API_KEY_PATTERN.match(parts[1]):
        return None
    return parts[1]


def get_client_key(request: Request) -> str:
    """Get client identifier for rate limiting - uses IP address"""
    return get_remote_address(request)


def get_agent_key(request: Request) -> str:
    """Get API key hash for rate limiting authenticated operations"""
    api_key = parse_bearer_token(request.headers.get("authorization"))
    if api_key:
        return hash_api_key(api_key)
    return get_remote_address(request)


limiter = Limiter(key_func=get_client_key)


def get_db():
    return get_db_client()


async def get_current_agent(
    authorization: Optional[str] = Header(None),
    db=Depends(get_db),
) -> Agent:
    """Resolve the calling agent from `Authorization: Bearer ab_...`"""
    api_key = parse_bearer_token(authorization)
    agent = await db.get_agent_by_api_key_hash(hash_api_key(api_key)) if api_key else None

    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized. Invalid or missing API key."
        )

    await db.touch_agent(agent.id)
    return agent


# Singleton instance
_payment_gate: Optional[PaymentGate] = None


def get_payment_gate() -> PaymentGate:
    """Get or create the payment gate for the configured network"""
    global _payment_gate

    if _payment_gate is None:
        config = get_marketplace_config()
        network = config.network
        _payment_gate = PaymentGate(
            network=network,
            onchain_verifier=OnChainVerifier(
                network,
                rpc_url=config.rpc_url,
                retries=config.payment_verification_retries,
                backoff_seconds=config.payment_verification_backoff,
                timeout=config.http_timeout_seconds,
            ),
            facilitator_verifier=FacilitatorVerifier(
                network,
                config.x402_facilitator_url,
                timeout=config.http_timeout_seconds,
                retries=config.payment_verification_retries,
                backoff_seconds=config.payment_verification_backoff,
            ),
        )
        logger.info(
            "payment_gate_ready",
            network=network.name,
            chain_id=network.chain_id,
            facilitator=config.x402_facilitator_url
        )

    return _payment_gate


async def close_payment_gate() -> None:
    global _payment_gate

    if _payment_gate is not None:
        await _payment_gate.facilitator_verifier.aclose()
        _payment_gate = None


def get_approval_machine(
    db=Depends(get_db),
    gate: PaymentGate = Depends(get_payment_gate),
) -> ApprovalStateMachine:
    return ApprovalStateMachine(db, gate, gate.network)

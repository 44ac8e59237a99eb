from datetime import datetime

from fastapi import APIRouter

from molted import __version__
from molted.config import get_marketplace_config
from molted.database import get_db_client
from molted.marketplace.dependencies import logger
from molted.marketplace.models import X402Manifest
from molted.payments import PAYMENT_HEADER, PAYMENT_REQUIRED_HEADER, RECEIPT_HEADER

router = APIRouter(tags=["General"])


@router.get("/", tags=["Health"])
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Molted Marketplace",
        "version": __version__,
        "status": "operational",
        "x402_manifest": "/x402.json"
    }


@router.get("/x402.json", response_model=X402Manifest, tags=["Payments"])
async def get_x402_manifest():
    """
    x402 protocol manifest
    Machine-readable specification for payment protocol
    """
    config = get_marketplace_config()
    network = config.network
    return X402Manifest(
        supported_networks=[network.name],
        chain_id=network.chain_id,
        asset=network.usdc_address,
        facilitator=config.x402_facilitator_url,
        headers={
            "payment_required": PAYMENT_REQUIRED_HEADER,
            "payment": PAYMENT_HEADER,
            "receipt": RECEIPT_HEADER
        },
        endpoints={
            "approve": "/approve",
            "complete": "/complete"
        }
    )


@router.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint - works even without database"""
    try:
        get_db_client()
        database = "configured"
    except Exception as e:
        logger.debug("health_check_database_unavailable", error=str(e))
        database = "not_configured"

    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "network": get_marketplace_config().x402_network,
        "database": database
    }

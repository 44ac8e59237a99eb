"""
Vercel Serverless Function Entry Point for the Molted Marketplace API
"""
import os
import sys

# Add project root to Python path
project_root = os.path.join(os.path.dirname(__file__), "..")
sys.path.insert(0, project_root)

from mangum import Mangum

from molted.config import configure_logging, get_marketplace_config
from molted.marketplace.server import app

# lifespan events don't run in serverless, so logging is configured here
config = get_marketplace_config()
configure_logging(config.log_level, config.log_format)

# api_gateway_base_path strips the /api prefix before routing
handler = Mangum(app, lifespan="off", api_gateway_base_path="/api")

"""HTTP routers for the marketplace API"""

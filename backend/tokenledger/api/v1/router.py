from fastapi import APIRouter

from tokenledger.api.v1 import (
    action_costs,
    health,
    organizations,
    tokens,
    transactions,
    wallet,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(tokens.router)
api_router.include_router(wallet.router)
api_router.include_router(transactions.router)
api_router.include_router(action_costs.router)
api_router.include_router(organizations.router)
api_router.include_router(health.router)

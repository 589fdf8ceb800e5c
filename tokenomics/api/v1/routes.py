from fastapi import APIRouter

from tokenomics.api.v1.endpoints.coins import router as coins_router
from tokenomics.api.v1.endpoints.exchange_rates import router as exchange_rates_router
from tokenomics.api.v1.endpoints.health import router as health_router

router = APIRouter()
router.include_router(health_router, tags=["meta"])
router.include_router(coins_router, tags=["coins"])
router.include_router(exchange_rates_router, tags=["exchange-rates"])

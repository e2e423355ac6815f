from fastapi import APIRouter
from app.api.routes import (
    properties,
    scrape,
    places,
    geocode,
    saved,
    seed,
)

api_router = APIRouter()

api_router.include_router(properties.router)
api_router.include_router(scrape.router)
api_router.include_router(places.router)
api_router.include_router(geocode.router)
api_router.include_router(saved.router)
api_router.include_router(seed.router)

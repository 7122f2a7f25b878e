from fastapi import APIRouter
from app.api.endpoints import assistant, dashboard, query

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(query.router)
api_router.include_router(assistant.router)
api_router.include_router(dashboard.router)

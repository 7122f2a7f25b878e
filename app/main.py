import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from app.core.config import settings
from app.core.database import close_datastore
from app.api.router import api_router

logging.basicConfig(level=settings.LOG_LEVEL)


# Close the shared datastore client once the app shuts down
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_datastore()


app = FastAPI(title="SiMbah Sales Query API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the SiMbah Sales Query API"}

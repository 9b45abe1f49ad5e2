from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from datetime import datetime
import logging

from config import (
    MONGO_URL, DB_NAME, CORS_ORIGINS, LOG_LEVEL, LOG_FORMAT,
    TRANSACTION_TIMEOUT_SECONDS, TRANSACTION_MAX_ATTEMPTS
)
from finance_routes import (
    finance_router, FinanceServices, configure_finance_services,
    register_finance_exception_handlers
)
from finance_core.indexes import create_finance_indexes

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format=LOG_FORMAT
)
logger = logging.getLogger(__name__)

# MongoDB connection
client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Initialize services
services = FinanceServices(
    client,
    db,
    timeout_seconds=TRANSACTION_TIMEOUT_SECONDS,
    max_attempts=TRANSACTION_MAX_ATTEMPTS
)
configure_finance_services(services)

# Create the main app
app = FastAPI(
    title="Project Finance Core",
    version="1.0.0",
    description="Ledger, capital validation, commitments, budget workflow and PO acceptance"
)

app.include_router(finance_router)
register_finance_exception_handlers(app)


@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "version": "1.0.0"
    }


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def ensure_indexes():
    await create_finance_indexes(db)
    logger.info(f"[STARTUP] Finance indexes ensured on database {DB_NAME}")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()

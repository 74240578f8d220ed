"""
AXON - Certificate notarization service
FastAPI application: certificate issuance with on-chain anchoring and verification
"""

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import text
from contextlib import asynccontextmanager
from datetime import datetime
import logging
import httpx
import uvicorn

from app.core.config import settings
from app.core.database import engine, get_db, init_db, test_connection
from app.services.chain_client import ChainClient
from app.api.api_v1.certificates.router import router as certificates_router

# Configure logging FIRST
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =====================================================
# LIFESPAN CONTEXT MANAGER
# =====================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} application...")

    if test_connection():
        logger.info("✅ Database connection successful")
        init_db()
    else:
        logger.error("❌ Database connection failed! Certificate endpoints will error.")

    # One chain client and one document client for the whole process
    app.state.chain_client = ChainClient.from_settings(settings)
    app.state.document_client = httpx.AsyncClient(
        timeout=settings.DOCUMENT_FETCH_TIMEOUT
    )
    if not app.state.chain_client.can_sign:
        logger.warning("⚠️ No usable POLYGON_PRIVATE_KEY: certificates will be issued without on-chain anchoring")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME} application...")
    await app.state.chain_client.aclose()
    await app.state.document_client.aclose()
    engine.dispose()
    logger.info("✅ Connections closed")


# =====================================================
# INITIALIZE FASTAPI APP
# =====================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="Hackathon certificate issuance and blockchain verification",
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# =====================================================
# MIDDLEWARE CONFIGURATION
# =====================================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =====================================================
# INCLUDE API ROUTERS
# =====================================================
app.include_router(certificates_router)
logger.info("✅ Certificates router registered at /api/certificates")


# =====================================================
# HEALTH CHECK
# =====================================================
@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint with database status"""
    health_status = {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now().isoformat()
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        health_status["database"] = "disconnected"
        health_status["db_error"] = str(e)

    return health_status


if __name__ == "__main__":
    print("=" * 60)
    print(f"🚀 {settings.APP_NAME} Server Starting...")
    print("=" * 60)

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )

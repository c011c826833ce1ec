"""
Supply Request Service
PostgreSQL Backend
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path
import logging

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import app_settings

# Create the main app
app = FastAPI(
    title="Supply Request Service",
    description="Project supply requests - PostgreSQL Backend",
    version="1.0.0"
)

# Health check endpoint at root level (for Kubernetes)
@app.get("/health")
async def root_health_check():
    """Health check endpoint for Kubernetes liveness/readiness probes"""
    return {"status": "healthy", "database": "PostgreSQL"}

# ==================== PostgreSQL Routes ====================
from routes.pg_auth_routes import pg_auth_router
from routes.pg_supply_requests_routes import pg_supply_requests_router

# Include all PostgreSQL routers
app.include_router(pg_auth_router)
app.include_router(pg_supply_requests_router)

# ==================== CORS Configuration ====================
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=app_settings.cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Logging Configuration ====================
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ==================== Startup & Shutdown Events ====================
@app.on_event("startup")
async def startup_db_client():
    """Initialize PostgreSQL database on startup"""
    logger.info("Starting Supply Request Service...")

    from database import init_postgres_db
    await init_postgres_db()

    logger.info("PostgreSQL database initialized successfully")

@app.on_event("shutdown")
async def shutdown_db_client():
    """Close database connections on shutdown"""
    logger.info("Shutting down...")

    from database import close_postgres_db
    await close_postgres_db()

    logger.info("Database connections closed")

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from careguard.config import settings
from careguard.core.error_handling import register_exception_handlers
from careguard.database import Base, SessionLocal, engine
from careguard import models  # noqa: F401 - registers tables on Base.metadata
from careguard.routers import caregivers, emergency
from careguard.services.alert_engine import build_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager: tables, escalation engine and its scheduler.
    """
    logger.info("🚀 Starting CareGuard Escalation Engine...")
    
    # Step 1: Create database tables
    logger.info("📊 Creating database tables...")
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("✅ Database tables created")
    except Exception as e:
        logger.error(f"❌ Failed to create tables: {e}")
    
    # Step 2: Build the escalation engine (tests may install their own)
    if getattr(app.state, "engine", None) is None:
        logger.info("🔔 Initializing notification providers...")
        app.state.engine = build_engine(SessionLocal, settings)
    
    # Step 3: Start escalation sweeps
    if settings.ESCALATION_SCHEDULER_ENABLED:
        logger.info("⏱️  Starting escalation scheduler...")
        try:
            app.state.engine.start_worker()
            logger.info("✅ Escalation scheduler started")
        except Exception as e:
            logger.error(f"❌ Escalation scheduler failed to start: {e}")
    else:
        logger.info("ℹ️  Escalation scheduler disabled (set ESCALATION_SCHEDULER_ENABLED=true to enable)")
    
    logger.info("🎉 CareGuard startup complete!")
    
    yield
    
    logger.info("🛑 Shutting down CareGuard...")
    app.state.engine.shutdown()
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="CareGuard - Emergency Alert Escalation",
    description="Escalating patient emergency alerts and caregiver notification chains",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

app.include_router(emergency.router)
app.include_router(caregivers.router)


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "careguard-escalation"}

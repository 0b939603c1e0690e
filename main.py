import os
import importlib
import logging
from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from alembic.config import Config
from alembic import command

# APScheduler imports
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from apps.inventory.reservations import sweep_expired_reservations
from core.config import settings
from core.database import SessionLocal
from core.exceptions import DomainError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# The directory where all application folders are located
APPS_DIRECTORY = "apps"
API_PREFIX = "/api/v1"
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# --- Database Migration Function ---
def run_migrations():
    """Programmatically runs Alembic migrations."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(os.path.join(BASE_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(BASE_DIR, "alembic"))
    # Run the 'upgrade head' command to apply all pending migrations
    command.upgrade(alembic_cfg, "head")
    logger.info("Migrations complete.")

# Initialize the main FastAPI application
app = FastAPI(
    title="Spareflow API",
    description="Spare parts inventory and outward-flow engine.",
    version="1.0.0",
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],  # Allows all origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Domain errors ---
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# --- Root Endpoint for Testing ---
@app.get("/")
async def health():
    return {"status": "ok", "service": app.title}

# --- Dynamic App Discovery and Router Inclusion ---
apps_path = os.path.join(BASE_DIR, APPS_DIRECTORY)

logger.info(f"Searching for apps in: {apps_path}")

if not os.path.isdir(apps_path):
    logger.error(f"The directory '{APPS_DIRECTORY}' was not found.")
else:
    for item_name in sorted(os.listdir(apps_path)):
        app_dir = os.path.join(apps_path, item_name)

        if not os.path.isfile(os.path.join(app_dir, "router.py")) or item_name.startswith(('_', '.')):
            continue

        module_name = f"{APPS_DIRECTORY}.{item_name}.router"
        try:
            # Import the models from each app to ensure Alembic can detect them
            importlib.import_module(f'{APPS_DIRECTORY}.{item_name}.models')

            router_module = importlib.import_module(module_name)
            router_instance = getattr(router_module, "router", None)

            if router_instance and isinstance(router_instance, APIRouter):
                app.include_router(
                    router_instance,
                    prefix=f"{API_PREFIX}/{item_name}",
                    tags=[item_name.replace("_", " ").capitalize()]
                )
                logger.info(f"Successfully loaded router from '{item_name}'.")
            else:
                logger.warning(f"Could not find a valid APIRouter named 'router' in '{module_name}'.")

        except ImportError as e:
            logger.error(f"Failed to import router for '{item_name}': {e}")
            raise

# --global scheduler variable
scheduler = None

# --- Startup Event Handler ---
@app.on_event("startup")
def startup_event():
    """Run database migrations and start the reservation sweep on application startup."""
    global scheduler
    logger.info("Starting Spareflow...")
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        run_migrations()

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        sweep_expired_reservations,
        IntervalTrigger(minutes=settings.RESERVATION_SWEEP_MINUTES),
        args=[SessionLocal],
        id="expire_stock_reservations",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Application is ready to serve requests.")

# --- Shutdown Event Handler ---
@app.on_event("shutdown")
def shutdown_event():
    """Shutdown the scheduler when the application stops."""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        logger.info("Scheduler shut down gracefully.")

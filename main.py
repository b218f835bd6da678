import logging
from fastapi import FastAPI

from config import LOG_LEVEL
from core.settings import load_config_modules, prepare_app
from db.connection import close_pool
from db.migrations.manager import init_database

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Nostrcheck API server")
app.state.modules = {}


@app.on_event("startup")
async def startup() -> None:
    settings = prepare_app()
    await init_database(settings)
    app.state.modules = load_config_modules(settings)
    logger.info(f"Enabled modules: {', '.join(app.state.modules) or 'none'}")


@app.on_event("shutdown")
async def shutdown() -> None:
    await close_pool()


@app.get("/health")
async def health():
    return {"status": "ok", "modules": sorted(app.state.modules)}

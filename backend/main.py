import logging
import os
import sys
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from backend.app.routes.matching import router as matching_router
    from backend.app.services.matching import create_matching_resources
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    from app.routes.matching import router as matching_router  # type: ignore[no-redef]
    from app.services.matching import create_matching_resources  # type: ignore[no-redef]


load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("matching")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

app = FastAPI(title="Provider Matching API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(matching_router)


@app.on_event("startup")
async def setup_matching() -> None:
    app.state.matching = await create_matching_resources()


@app.on_event("shutdown")
async def teardown_matching() -> None:
    resources = getattr(app.state, "matching", None)
    if resources is not None:
        await resources.close()
        app.state.matching = None
        logger.info("Matching resources closed")


@app.get("/api/health")
def health() -> dict:
    return {"ok": True}

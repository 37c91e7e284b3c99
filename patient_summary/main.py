import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from patient_summary.config import FHIR_SERVER_URL, LOG_LEVEL
from patient_summary.routers import summary
from patient_summary.services.fhir_client import FhirDirectory

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Patient Summary service (FHIR server: %s)", FHIR_SERVER_URL or "none")
    app.state.directory = FhirDirectory(FHIR_SERVER_URL)
    yield
    await app.state.directory.aclose()
    logger.info("Patient Summary service shut down")


app = FastAPI(
    title="Patient Summary",
    description="Aggregates stored clinical documents into a single Patient Summary document",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(summary.router)


@app.get("/health")
async def health():
    return {"status": "ok"}

"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from sqlalchemy import text

from schemagate import __version__
from schemagate.config import get_settings
from schemagate.db.session import SessionLocal
from schemagate.drift.errors import ParseError
from schemagate.drift.ssot_parser import parse_ssot_expectations
from schemagate.drift.ssot_reader import read_ssot_sql_text
from schemagate.routers import tenant_schema

logger = logging.getLogger(__name__)


def _warm_backend_state() -> None:
    """Prime the control DB connection and parse the configured SSOT once at start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Backend warm-up failed; continuing without startup pre-warm.")

    try:
        expectation = parse_ssot_expectations(read_ssot_sql_text())
        logger.info("schema.ssot_loaded tables=%d indexes=%d", len(expectation.tables), len(expectation.indexes))
    except ParseError as exc:
        logger.warning("schema.ssot_unavailable code=%s", exc.code)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _warm_backend_state()
    yield


app = FastAPI(title=get_settings().app_name, version=__version__, lifespan=lifespan)

app.include_router(tenant_schema.router, tags=["tenant-schema"])


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}

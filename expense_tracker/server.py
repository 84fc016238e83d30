"""FastAPI application exposing the expense tracking procedures."""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from . import __version__, database, rpc, schemas
from .config import Settings, load_settings

LOG = logging.getLogger(__name__)


async def _read_input(request: Request, procedure: str) -> Any:
    """Extract the procedure input from the query string or the JSON body."""

    if request.method == "GET":
        raw = request.query_params.get("input")
        if raw is None or raw == "":
            return None
    else:
        body = await request.body()
        if not body.strip():
            return None
        raw = body
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise rpc.RPCError("BAD_REQUEST", "Request input is not valid JSON", procedure=procedure) from exc
    if request.method == "GET":
        return payload
    if not isinstance(payload, dict):
        raise rpc.RPCError(
            "BAD_REQUEST",
            'Request body must be a JSON object of the form {"input": ...}',
            procedure=procedure,
        )
    return payload.get("input")


def create_app(settings: Optional[Settings] = None, *, engine: Optional[Engine] = None) -> FastAPI:
    """Build the application bound to its own engine and session factory.

    Passing ``engine`` lets callers (tests, embedding scripts) share a
    pre-configured engine instead of one built from ``settings``.
    """

    settings = settings or load_settings()
    owns_engine = engine is None
    if engine is None:
        engine = database.create_db_engine(settings.database_url, echo=settings.sql_echo)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        database.init_db(engine)
        yield
        if owns_engine:
            engine.dispose()

    app = FastAPI(title="Expense Tracker RPC", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = database.make_session_factory(engine)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.api_route("/rpc/{procedure}", methods=["GET", "POST"], tags=["rpc"])
    async def dispatch(procedure: str, request: Request) -> JSONResponse:
        try:
            proc = rpc.resolve(procedure, request.method)
            raw_input = await _read_input(request, procedure)
            data = await run_in_threadpool(
                rpc.call, proc, request.app.state.session_factory, raw_input
            )
        except rpc.RPCError as exc:
            return JSONResponse(status_code=exc.status, content=exc.to_payload())
        return JSONResponse(content={"result": {"data": data}})

    @app.get("/health", tags=["system"])
    def healthcheck() -> dict[str, Any]:
        return schemas.HealthStatus().model_dump(mode="json")

    LOG.debug("Registered procedures: %s", ", ".join(sorted(rpc.PROCEDURES)))
    return app


__all__ = ["create_app"]

"""FastAPI control surface for the orchestrator.

Every response, including errors, uses the ``{status, message, data}``
envelope so external tools can drive agents without special-casing.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .agents.state import Vec3
from .config import settings
from .db import init_db, new_session
from .errors import (
    AlreadyInProgress,
    ApplicationError,
    CapacityExceeded,
    DuplicateId,
    SimulationError,
    TransportFailure,
    UnknownAgent,
    UnknownAgentTarget,
    UnknownLocation,
)
from .runtime import SimulationRuntime
from .schemas import AgentRegister, ConverseCommand, LocationCreate, MoveCommand, SpeakCommand, error, success

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    UnknownAgent: 404,
    DuplicateId: 409,
    CapacityExceeded: 409,
    AlreadyInProgress: 409,
    UnknownLocation: 400,
    UnknownAgentTarget: 400,
    TransportFailure: 502,
    ApplicationError: 502,
}

SIMULATION_ACTIONS = {"tick", "start", "pause", "resume", "stop", "restart"}


def _default_runtime() -> SimulationRuntime:
    return SimulationRuntime.from_settings(new_session)


def create_app(runtime_factory: Callable[[], SimulationRuntime] = _default_runtime) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db()
        runtime = runtime_factory()
        app.state.runtime = runtime
        await runtime.startup()
        try:
            yield
        finally:
            await runtime.shutdown()

    app = FastAPI(title="Agent Decision Orchestrator", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)
    _install_routes(app)
    return app


def _runtime(request: Request) -> SimulationRuntime:
    return request.app.state.runtime


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException):
        message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=error(message))

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError):
        details = [{"loc": list(item.get("loc", ())), "msg": item.get("msg", "")} for item in exc.errors()]
        return JSONResponse(status_code=422, content=error("Invalid request body", details))

    @app.exception_handler(SimulationError)
    async def simulation_error(_request: Request, exc: SimulationError):
        status_code = ERROR_STATUS.get(type(exc), 500)
        return JSONResponse(status_code=status_code, content=error(str(exc)))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("request failed path=%s", request.url.path)
        return JSONResponse(status_code=500, content=error(f"Internal server error: {exc}"))


def _install_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health(request: Request):
        return success("ok", _runtime(request).health())

    @app.get("/agents")
    async def list_agents(request: Request):
        runtime = _runtime(request)
        return success(f"{len(runtime.store)} agents", [agent.to_dict() for agent in runtime.store.agents()])

    @app.post("/agent/register")
    async def register_agent(payload: AgentRegister, request: Request):
        try:
            agent = await _runtime(request).registry.create_agent(
                payload.agentId,
                payload.personality,
                payload.initialLocation,
            )
        except ValueError as exc:
            return JSONResponse(status_code=400, content=error(str(exc)))
        return success(f"Agent {agent.agent_id} registered successfully", agent.to_dict())

    @app.post("/agent/{agent_id}/move")
    async def move_agent(agent_id: str, payload: MoveCommand, request: Request):
        runtime = _runtime(request)
        destination = runtime.dispatcher.move(agent_id, payload.location)
        return success(f"Agent {agent_id} moving to {destination}", runtime.store.require(agent_id).to_dict())

    @app.post("/agent/{agent_id}/speak")
    async def speak(agent_id: str, payload: SpeakCommand, request: Request):
        _runtime(request).dispatcher.speak(agent_id, payload.message)
        return success(f"Agent {agent_id} said message", {"message": payload.message})

    @app.post("/agent/{agent_id}/converse")
    async def converse(agent_id: str, payload: ConverseCommand, request: Request):
        runtime = _runtime(request)
        started = runtime.dispatcher.converse(agent_id, payload.targetAgent)
        agent = runtime.store.require(agent_id)
        if not started:
            return success(f"Agent {agent_id} already conversing with {agent.conversation_partner_id}", agent.to_dict())
        return success(f"Agent {agent_id} started conversation with {agent.conversation_partner_id}", agent.to_dict())

    @app.post("/agent/{agent_id}/deregister")
    async def deregister(agent_id: str, request: Request):
        if not await _runtime(request).registry.remove_agent(agent_id):
            raise UnknownAgent(f"Agent with ID {agent_id} not found")
        return success(f"Agent {agent_id} deregistered successfully")

    @app.get("/env/{agent_id}")
    async def environment(agent_id: str, request: Request):
        runtime = _runtime(request)
        runtime.store.require(agent_id)
        return success("Environment state retrieved", runtime.perception.get_environment_state(agent_id))

    @app.post("/locations")
    async def add_location(payload: LocationCreate, request: Request):
        runtime = _runtime(request)
        try:
            runtime.locations.add_known_location(payload.name, Vec3(payload.x, payload.y, payload.z))
        except ValueError as exc:
            raise UnknownLocation(str(exc)) from exc
        return success(f"Location {payload.name} added", runtime.locations.to_list())

    @app.get("/simulation")
    async def simulation_state(request: Request):
        return success("Simulation state", _runtime(request).scheduler.snapshot())

    @app.post("/simulation/{action}")
    async def simulation_action(action: str, request: Request, wait: bool = False):
        if action not in SIMULATION_ACTIONS:
            raise StarletteHTTPException(status_code=404)
        scheduler = _runtime(request).scheduler
        data: dict = {}
        if action == "tick":
            tasks = await scheduler.trigger()
            if wait and tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            data["dispatched"] = len(tasks)
        elif action == "stop":
            await scheduler.stop()
        else:
            data["changed"] = getattr(scheduler, action)()
        data.update(scheduler.snapshot())
        return success(f"Simulation {action}", data)

    @app.get("/events")
    async def list_events(request: Request, limit: int = 200, agent_id: Optional[str] = None):
        limit = max(1, min(limit, 1000))
        return success("Events", _runtime(request).recorder.recent(limit, agent_id))


app = create_app()

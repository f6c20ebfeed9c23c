"""Circuit breaker status endpoints for services that embed the client.

Endpoints:
- GET /circuits - List the breaker of every registered client
- GET /circuits/{name} - Get one client's breaker
- POST /circuits/{name}/reset - Force a breaker back to closed

Usage::

    app = FastAPI()
    app.include_router(create_circuits_router({"billing": billing_client}),
                       prefix="/circuits")
"""

from __future__ import annotations

from typing import Mapping

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from .circuit_breaker import CircuitBreaker, CircuitSnapshot
from .client import ResilientRestClient


class CircuitResponse(BaseModel):
    """Response model for one client's circuit breaker."""

    name: str
    state: str
    failure_count: int
    failure_threshold: int
    open_duration_ms: int
    time_until_retry_ms: float


class CircuitListResponse(BaseModel):
    circuits: list[CircuitResponse]
    total: int


def _to_response(snapshot: CircuitSnapshot) -> CircuitResponse:
    return CircuitResponse.model_validate(snapshot.to_dict())


def create_circuits_router(clients: Mapping[str, ResilientRestClient]) -> APIRouter:
    """Build a router reporting on the breakers of the given clients.

    Clients configured without a circuit breaker are left out.

    Args:
        clients: Clients keyed by the name used in the URL path.
    """
    router = APIRouter()

    def _breakers() -> dict[str, CircuitBreaker]:
        return {
            name: client.circuit_breaker
            for name, client in clients.items()
            if client.circuit_breaker is not None
        }

    def _lookup(name: str) -> CircuitBreaker:
        breaker = _breakers().get(name)
        if breaker is None:
            raise HTTPException(status_code=404, detail=f"Circuit '{name}' not found")
        return breaker

    @router.get("", response_model=CircuitListResponse)
    async def list_circuits(state: str | None = None) -> CircuitListResponse:
        """List circuits, optionally filtered by state (closed, open, half_open)."""
        circuits = []
        for name, breaker in _breakers().items():
            snapshot = breaker.snapshot()
            if state is not None and snapshot.state.value != state:
                continue
            response = _to_response(snapshot)
            circuits.append(response.model_copy(update={"name": name}))
        return CircuitListResponse(circuits=circuits, total=len(circuits))

    @router.get("/{name}", response_model=CircuitResponse)
    async def get_circuit(name: str) -> CircuitResponse:
        response = _to_response(_lookup(name).snapshot())
        return response.model_copy(update={"name": name})

    @router.post("/{name}/reset", response_model=CircuitResponse)
    async def reset_circuit(name: str) -> CircuitResponse:
        """Reset a circuit to closed with no recorded failures."""
        breaker = _lookup(name)
        await breaker.reset()
        return _to_response(breaker.snapshot()).model_copy(update={"name": name})

    return router

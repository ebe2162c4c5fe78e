"""
server/api.py
=============
FastAPI application exposing the intersection to displays and producers.

Start it through :mod:`main` with ``TRAFFIC_API=1``, or directly::

    python -m server.api          # → http://127.0.0.1:8000/snapshot

Endpoints
---------
``GET  /snapshot``              latest intersection snapshot
``POST /vehicles``              queue a vehicle ``{type, direction}``
``GET  /queues/{direction}``    queue preview in dequeue order
``POST /simulation/start``      start the phase controller
``POST /simulation/stop``       stop the phase controller
``GET  /metrics``               event bus counters
"""

import uvicorn
from fastapi import FastAPI, Query
from pydantic import BaseModel

from config import DEFAULT_API_HOST, DEFAULT_API_PORT, DEFAULT_PREVIEW_SIZE
from sim.model import Direction, VehicleType
from sim.phase_controller import PhaseController

# ── Pydantic request schemas ─────────────────────────────────────────────────


class VehicleRequest(BaseModel):
    """Vehicle submitted to ``/vehicles``."""
    type: VehicleType
    direction: Direction


# ── FastAPI application ──────────────────────────────────────────────────────


def create_app(controller: PhaseController) -> FastAPI:
    """Build the API around an existing controller (not started here)."""
    app = FastAPI(
        title="Smart Traffic Light API",
        description="Four-way intersection with emergency-vehicle priority.",
        version="1.0",
    )
    app.state.controller = controller

    @app.get("/snapshot")
    def get_snapshot():
        """Lights, queue sizes, previews and override state."""
        return controller.get_snapshot().as_dict()

    @app.post("/vehicles", status_code=201)
    def add_vehicle(request: VehicleRequest):
        """Queue a vehicle on its origin arm."""
        vehicle = controller.add_vehicle(request.type, request.direction)
        return vehicle.as_dict()

    @app.get("/queues/{direction}")
    def queue_preview(
        direction: Direction,
        limit: int = Query(DEFAULT_PREVIEW_SIZE, ge=1, le=100),
    ):
        """Head of one queue, in the order vehicles will pass."""
        intersection = controller.intersection
        return {
            "direction": direction.value,
            "size": intersection.queue_size(direction),
            "light": intersection.light_state(direction).value,
            "vehicles": [
                v.as_dict() for v in intersection.queue_preview(direction, limit)
            ],
        }

    @app.post("/simulation/start")
    def start_simulation():
        """Start the controller; already running is not an error."""
        started = controller.start()
        return {"running": controller.is_running(), "changed": started}

    @app.post("/simulation/stop")
    def stop_simulation():
        """Stop the controller; already stopped is not an error."""
        stopped = controller.stop()
        return {"running": controller.is_running(), "changed": stopped}

    @app.get("/metrics")
    def bus_metrics():
        return controller.bus.metrics.report()

    return app


def serve(controller: PhaseController, host: str = DEFAULT_API_HOST,
          port: int = DEFAULT_API_PORT) -> None:
    """Blocking: serve the API until interrupted."""
    uvicorn.run(create_app(controller), host=host, port=port)


# ── Standalone entry point ───────────────────────────────────────────────────

if __name__ == "__main__":
    from sim.intersection import Intersection

    ctrl = PhaseController(Intersection())
    ctrl.start()
    print(f"Starting traffic API on http://{DEFAULT_API_HOST}:{DEFAULT_API_PORT} …")
    try:
        serve(ctrl)
    finally:
        ctrl.stop()

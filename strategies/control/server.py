"""
Strategy Control API Server

FastAPI app exposing engine status, per-strategy metrics, a manual
force-close and on-demand runs of the periodic jobs. Built per engine instance by ``create_app``.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from helpers.unified_logger import get_service_logger
from strategies.control.auth import APIKeyAuth


def create_app(engine, api_key: Optional[str] = None) -> FastAPI:
    """
    Args:
        engine: ``FundingArbEngine`` (or anything exposing ``status``,
            ``get_strategy_metrics``, ``force_close`` and ``run_task``)
        api_key: Required key for every ``/api`` route; None disables auth
    """
    logger = get_service_logger("control_api")
    auth = APIKeyAuth(api_key)

    app = FastAPI(
        title="Funding Arbitrage Control API",
        description="REST API for inspecting and controlling the funding arbitrage engine",
        version="1.0.0"
    )

    @app.get("/api/v1/status", response_model=Dict[str, Any], dependencies=[Depends(auth)])
    async def get_status():
        """Active strategy count, last analysis time and kill-switch state."""
        return jsonable_encoder(await engine.status())

    @app.get("/api/v1/strategies/{strategy_id}", response_model=Dict[str, Any], dependencies=[Depends(auth)])
    async def get_strategy(strategy_id: str):
        metrics = await engine.get_strategy_metrics(strategy_id)
        if metrics is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Strategy {strategy_id} not found"
            )
        return jsonable_encoder(asdict(metrics))

    @app.post("/api/v1/strategies/{strategy_id}/close", response_model=Dict[str, Any], dependencies=[Depends(auth)])
    async def close_strategy(strategy_id: str):
        """Force-close every leg of a strategy."""
        logger.warning(f"Force close of {strategy_id} requested via API")
        result = await engine.force_close(strategy_id)

        if result.noop and result.status is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Strategy {strategy_id} not found"
            )

        body = jsonable_encoder(asdict(result))
        body["fully_closed"] = result.fully_closed
        if result.already_in_progress:
            return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body)
        return body

    @app.post("/api/v1/tasks/{task_name}/run", response_model=Dict[str, Any], dependencies=[Depends(auth)])
    async def run_task(task_name: str):
        """Run one periodic job now, outside its schedule."""
        try:
            result = await engine.run_task(task_name)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        return jsonable_encoder(result)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": f"Internal server error: {str(exc)}"}
        )

    return app

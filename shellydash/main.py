import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List

from dateutil.parser import isoparse
from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .errors import (
    CommandFailed,
    DuplicateDevice,
    ShellyDashError,
    StorageUnavailable,
    UnknownDevice,
    UnknownDeviceType,
    UnsupportedCommand,
)
from .machine import DeviceConfig
from .schemas import (
    CommandRequest,
    CommandResponse,
    DeviceCreate,
    DeviceOut,
    DeviceUpdate,
    HealthOut,
    MetricOut,
    device_out,
)
from .service import DashboardService
from .settings import settings
from .ws_manager import ConnectionManager

log = logging.getLogger("shellydash.api")

ERROR_STATUS = {
    UnknownDevice: status.HTTP_404_NOT_FOUND,
    UnknownDeviceType: status.HTTP_400_BAD_REQUEST,
    UnsupportedCommand: status.HTTP_400_BAD_REQUEST,
    CommandFailed: status.HTTP_400_BAD_REQUEST,
    DuplicateDevice: status.HTTP_409_CONFLICT,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def parse_date(value: str | None, name: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = isoparse(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} is not an ISO 8601 date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def metrics_out(samples) -> list[MetricOut]:
    return [MetricOut.model_validate(s, from_attributes=True) for s in samples]


def create_app(service: DashboardService | None = None) -> FastAPI:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    service = service or DashboardService()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="ShellyDash API", version="0.1.0", lifespan=lifespan)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    manager = ConnectionManager(service.hub)

    @app.exception_handler(ShellyDashError)
    async def dashboard_error(request: Request, exc: ShellyDashError):
        code = next((c for t, c in ERROR_STATUS.items() if isinstance(exc, t)), status.HTTP_500_INTERNAL_SERVER_ERROR)
        if code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content={"success": False, "error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "invalid request", "details": jsonable_errors(exc)},
        )

    @app.get("/api/health", response_model=HealthOut)
    def health():
        bridge = service.bridge.status()
        return HealthOut(
            status="ok" if bridge["state"] == "connected" else "degraded",
            bridge=bridge,
            devices=len(service.registry),
            subscribers=service.hub.subscriber_count(),
        )

    @app.get("/api/devices", response_model=List[DeviceOut])
    async def list_devices():
        return [device_out(d) for d in service.fetch_all_devices()]

    @app.get("/api/devices/{device_id}", response_model=DeviceOut)
    async def get_device(device_id: str):
        return device_out(service.get_device(device_id))

    @app.post(
        "/api/devices",
        response_model=DeviceOut,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_device(body: DeviceCreate):
        config = DeviceConfig(
            id=body.id,
            name=body.name,
            type=body.type,
            topic_prefix=body.topic_prefix,
            capabilities=frozenset(body.capabilities),
        )
        return device_out(await service.create_device(config))

    @app.put("/api/devices/{device_id}", response_model=DeviceOut)
    async def update_device(device_id: str, body: DeviceUpdate):
        return device_out(await service.update_device(device_id, body.model_dump(exclude_none=True)))

    @app.delete("/api/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_device(device_id: str, purge_metrics: bool = Query(False, alias="purgeMetrics")):
        await service.remove_device(device_id, purge_metrics=purge_metrics)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/devices/{device_id}/command", response_model=CommandResponse)
    async def post_command(device_id: str, body: CommandRequest):
        result = await service.execute_command(device_id, body.command, body.params)
        return CommandResponse(success=True, command=body.command, result=result)

    @app.get("/api/devices/{device_id}/metrics", response_model=List[MetricOut])
    async def get_metrics(
        device_id: str,
        start_date: str | None = Query(None, alias="startDate"),
        end_date: str | None = Query(None, alias="endDate"),
        limit: int | None = Query(None, ge=1),
        interval: int | None = Query(None, ge=1),
    ):
        samples = await service.get_device_metrics(
            device_id,
            start=parse_date(start_date, "startDate"),
            end=parse_date(end_date, "endDate"),
            limit=limit,
            interval_ms=interval,
        )
        return metrics_out(samples)

    @app.get(
        "/api/devices/{device_id}/metrics/aggregated",
        response_model=List[MetricOut],
    )
    async def get_aggregated_metrics(
        device_id: str,
        time_range: str | None = Query("day", alias="timeRange"),
        interval: int | None = Query(None, ge=1),
    ):
        return metrics_out(await service.get_aggregated_metrics(device_id, time_range, interval))

    @app.get("/api/devices/{device_id}/metrics/latest", response_model=MetricOut | None)
    async def get_latest_metric(device_id: str):
        sample = await service.get_latest_metric(device_id)
        return MetricOut.model_validate(sample, from_attributes=True) if sample else None

    @app.websocket("/ws/devices")
    async def devices_ws(websocket: WebSocket):
        await manager.connect(websocket, service.snapshot())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            await manager.disconnect(websocket)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


app = create_app()


def run():
    import uvicorn

    uvicorn.run("shellydash.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()

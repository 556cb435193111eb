# main.py
from __future__ import annotations

import logging
import os
from contextlib import suppress
from dataclasses import dataclass

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from floorapp.api_client import FloorClient
from floorapp.auth import AuthService
from floorapp.config import FloorConfig, load_config
from floorapp.data_sync import DataDownloader, cached_orders
from floorapp.errors import (
    AuthError,
    ConnectivityError,
    ExportValidationError,
    FloorAPIError,
    LotAlreadyQueued,
    MutationNotFound,
    WorkOrderError,
)
from floorapp.location_codes import suggest_locations
from floorapp.lots import ExportLine, LotService
from floorapp.models import AUTO_WAREHOUSE, WorkTarget, mutation_to_dict
from floorapp.mutation_store import (
    BlobQueueAdapter,
    MutationStore,
    discard,
    queue_hall_move,
    reassign_scan,
    record_scan,
)
from floorapp.offline_index import OfflineIndex, load_offline_index
from floorapp.reconciler import Reconciler
from floorapp.scan_log import ScanLog, sync_scan_log
from floorapp.smart_input import parse_work_target
from floorapp.storage import (
    DATA_LAST_UPDATED_KEY,
    LAST_SYNC_KEY,
    OCCUPIED_KEY,
    STATIC_LOCATIONS_KEY,
    BlobStore,
)

logger = logging.getLogger("main")

load_dotenv()


def _env(*names: str, default: str = "") -> str:
    for n in names:
        v = (os.getenv(n) or "").strip()
        if v:
            return v
    return (default or "").strip()


def setup_logging() -> None:
    level = _env("LOG_LEVEL", default="INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@dataclass
class Services:
    config: FloorConfig
    client: FloorClient
    blob: BlobStore
    store: MutationStore
    scan_log: ScanLog
    auth: AuthService
    downloader: DataDownloader
    lots: LotService
    reconciler: Reconciler
    index: OfflineIndex

    def refresh_index(self) -> OfflineIndex:
        self.index = load_offline_index(self.blob)
        return self.index

    async def aclose(self) -> None:
        with suppress(Exception):
            await self.client.aclose()
        with suppress(Exception):
            await self.scan_log.dispose()


def build_services(cfg: FloorConfig | None = None, *, client: FloorClient | None = None) -> Services:
    cfg = cfg or load_config()
    client = client or FloorClient(base_url=cfg.base_url, timeout_s=cfg.timeout_s)
    blob = BlobStore(cfg.storage_dir)
    store = MutationStore(BlobQueueAdapter(blob))

    services = Services(
        config=cfg,
        client=client,
        blob=blob,
        store=store,
        scan_log=ScanLog.from_url(cfg.database_url),
        auth=AuthService(client, blob),
        downloader=DataDownloader(client, blob),
        lots=LotService(client, lambda: services.index),
        reconciler=Reconciler(
            client,
            store,
            blob,
            batch_size=cfg.sync_batch_size,
            batch_delay_s=cfg.sync_batch_delay_s,
        ),
        index=load_offline_index(blob),
    )
    return services


# -----------------------------------------------------------------------------
# Request bodies
# -----------------------------------------------------------------------------


class LoginBody(BaseModel):
    username: str
    password: str


class ScanBody(BaseModel):
    code: str
    quantity: float = 1
    warehouse: int | None = None
    zone: str | None = None
    row: int | None = None
    level: int | None = None
    smart: str | None = None


class ReassignBody(BaseModel):
    position: str


class ScanLogBody(BaseModel):
    code: str
    quantity: float = 1


class HallMoveBody(BaseModel):
    order_id: str
    code: str
    target_warehouse: str = AUTO_WAREHOUSE


class ExportBody(BaseModel):
    mode: str = "FULL"
    reason: str = ""
    lines: list[ExportLine] = Field(default_factory=list)


def _target_from(body: ScanBody) -> WorkTarget | None:
    fields = {
        k: v
        for k, v in {"warehouse": body.warehouse, "zone": body.zone, "row": body.row, "level": body.level}.items()
        if v is not None
    }
    if not fields and not body.smart:
        return None
    target = WorkTarget(**fields)
    if body.smart:
        target = parse_work_target(body.smart).apply(target)
    elif target.is_hall:
        target = target.model_copy(update={"row": None, "level": None})
    return target


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI()
    app.state.services = services
    owns_services = services is None

    def svc() -> Services:
        current = app.state.services
        if current is None:
            raise HTTPException(status_code=503, detail="services not started")
        return current

    @app.exception_handler(ConnectivityError)
    async def _on_connectivity(request: Request, exc: ConnectivityError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"ok": False, "error": str(exc)})

    @app.exception_handler(FloorAPIError)
    async def _on_api_error(request: Request, exc: FloorAPIError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"ok": False, "error": str(exc)})

    @app.on_event("startup")
    async def on_startup() -> None:
        if app.state.services is None:
            logger.info("Startup: building services")
            app.state.services = build_services()
        logger.info("Startup: initializing scan log")
        await app.state.services.scan_log.init()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        s = app.state.services
        if s is None:
            return
        if owns_services:
            logger.info("Shutdown: closing clients")
            await s.aclose()
        else:
            logger.info("Shutdown: closing scan log")
            await s.scan_log.dispose()

    @app.get("/health")
    async def health() -> dict:
        s = svc()
        return {
            "ok": True,
            "pending": len(s.store),
            "last_sync": s.blob.get(LAST_SYNC_KEY),
            "data_last_updated": s.blob.get(DATA_LAST_UPDATED_KEY),
        }

    @app.post("/login")
    async def login(body: LoginBody) -> dict:
        try:
            user = await svc().auth.login(body.username, body.password)
        except AuthError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return {"ok": True, "user": user}

    @app.get("/pending")
    async def pending() -> dict:
        s = svc()
        return {
            "items": [mutation_to_dict(m) for m in s.store.list_all()],
            "unreadable": len(s.store.unreadable()),
        }

    @app.put("/pending/{mutation_id}")
    async def reassign_pending(mutation_id: str, body: ReassignBody) -> dict:
        s = svc()
        try:
            mutation = reassign_scan(s.store, mutation_id, body.position, actor=s.auth.actor_name())
        except MutationNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"ok": True, "item": mutation_to_dict(mutation)}

    @app.delete("/pending/{mutation_id}")
    async def discard_pending(mutation_id: str) -> dict:
        if not discard(svc().store, [mutation_id]):
            raise HTTPException(status_code=404, detail=f"No pending mutation {mutation_id}")
        return {"ok": True}

    @app.get("/scan-log")
    async def scan_log_list() -> dict:
        rows = await svc().scan_log.all_scans()
        return {
            "items": [
                {
                    "id": r.id,
                    "code": r.code,
                    "quantity": r.quantity,
                    "timestamp": r.timestamp.isoformat(),
                    "synced": r.synced,
                }
                for r in rows
            ]
        }

    @app.post("/scan-log")
    async def scan_log_add(body: ScanLogBody) -> dict:
        try:
            scan_id = await svc().scan_log.add_scan(body.code, body.quantity)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"ok": True, "id": scan_id}

    @app.delete("/scan-log/{scan_id}")
    async def scan_log_delete(scan_id: int) -> dict:
        await svc().scan_log.delete_scan(scan_id)
        return {"ok": True}

    @app.post("/scan")
    async def scan(body: ScanBody) -> dict:
        s = svc()
        try:
            mutation = record_scan(
                s.store,
                body.code,
                _target_from(body),
                s.blob.get_list(STATIC_LOCATIONS_KEY),
                s.blob.get_dict(OCCUPIED_KEY).keys(),
                actor=s.auth.actor_name(),
                quantity=body.quantity,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"ok": True, "item": mutation_to_dict(mutation), "assigned": bool(mutation.position)}

    @app.post("/hall-moves")
    async def hall_moves(body: HallMoveBody) -> dict:
        s = svc()
        order = next((o for o in cached_orders(s.blob) if o.id == body.order_id), None)
        if order is None:
            with suppress(ConnectivityError):
                order = await s.client.get_export_order(body.order_id)
        if order is None:
            raise HTTPException(status_code=404, detail=f"order {body.order_id} not found")
        try:
            mutation = queue_hall_move(
                s.store,
                order,
                body.code,
                body.target_warehouse,
                actor=s.auth.actor_name(),
            )
        except LotAlreadyQueued as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except (WorkOrderError, ValueError) as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"ok": True, "item": mutation_to_dict(mutation)}

    @app.post("/sync")
    async def sync() -> dict:
        s = svc()
        report = await s.reconciler.run()
        uploaded = 0
        try:
            uploaded = await sync_scan_log(s.client, s.scan_log, device_id=s.config.device_id)
        except FloorAPIError as exc:
            logger.warning("Scan log upload skipped: %s", exc)
        return {"ok": True, "report": report.to_dict(), "scans_uploaded": uploaded}

    @app.post("/download")
    async def download() -> dict:
        s = svc()
        summary = await s.downloader.download_all()
        index = s.refresh_index()
        return {
            "ok": True,
            "locations": summary.locations,
            "occupied": summary.occupied,
            "orders": summary.orders,
            "warehouses": summary.warehouses,
            "indexed_lots": len(index),
        }

    @app.get("/warehouse/{warehouse_id}")
    async def warehouse(warehouse_id: int) -> dict:
        zones, offline = await svc().downloader.load_warehouse_status(warehouse_id)
        return {"offline": offline, "zones": [z.model_dump(by_alias=True) for z in zones]}

    @app.get("/lots/{code}")
    async def lot_details(code: str) -> dict:
        details = await svc().lots.fetch_lot_details(code)
        if details is None:
            raise HTTPException(status_code=404, detail=f"lot {code} not found")
        return details.model_dump()

    @app.post("/lots/{code}/export")
    async def export_lot(code: str, body: ExportBody) -> dict:
        s = svc()
        try:
            return await s.lots.export_lot(
                code,
                mode=body.mode,
                reason=body.reason,
                lines=body.lines,
                actor=s.auth.actor_name(),
            )
        except ExportValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @app.get("/suggest")
    async def suggest(q: str = Query(""), limit: int = Query(5, ge=1, le=50)) -> dict:
        s = svc()
        items = suggest_locations(
            q,
            s.blob.get_list(STATIC_LOCATIONS_KEY),
            s.blob.get_dict(OCCUPIED_KEY),
            limit=limit,
        )
        return {"items": [{"code": i.code, "score": i.score, "lot_code": i.lot_code} for i in items]}

    return app


setup_logging()
app = create_app()


__all__ = ["Services", "app", "build_services", "create_app", "setup_logging"]

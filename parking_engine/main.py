import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from parking_engine import __version__, database
from parking_engine.billing import get_policy, utcnow
from parking_engine.config import (
    API_HOST, API_PORT, BILLING_MODEL, CAR_SPOTS, MOTORCYCLE_SPOTS,
    RESYNC_INTERVAL_SECONDS, TICK_INTERVAL_SECONDS,
)
from parking_engine.errors import ParkingError
from parking_engine.models import ParkRequest, RatesUpdate, Receipt, Spot, VehicleClass
from parking_engine.plates import format_currency, format_elapsed
from parking_engine.service import ParkingService, UserContexts
from parking_engine.stores import MongoRateConfigStore, MongoSessionStore, RateConfigStore, SessionStore

logger = logging.getLogger(__name__)


def spot_to_dict(spot: Spot) -> dict:
    data = {
        "spot_id": spot.id,
        "spot_type": spot.vehicle_class.value,
        "status": "occupied" if spot.is_occupied else "free",
        "current_vehicle": None,
    }
    session = spot.session
    if session is not None:
        data["current_vehicle"] = {
            "license_plate": session.license_plate,
            "phone_number": session.phone_number,
            "entry_time": session.entry_time.isoformat(),
            "minutes": session.elapsed_minutes,
            "seconds": session.elapsed_seconds,
            "elapsed": format_elapsed(session.elapsed_minutes, session.elapsed_seconds),
            "cost": float(session.accrued_cost),
            "cost_display": format_currency(session.accrued_cost),
        }
    return data


def receipt_to_dict(receipt: Receipt) -> dict:
    return {
        "spot_id": receipt.spot_id,
        "vehicle_type": receipt.vehicle_class.value,
        "license_plate": receipt.license_plate,
        "phone_number": receipt.phone_number,
        "entry_time": receipt.entry_time.isoformat(),
        "exit_time": receipt.exit_time.isoformat(),
        "duration_minutes": receipt.elapsed_minutes,
        "cost": float(receipt.cost),
        "cost_display": format_currency(receipt.cost),
    }


def create_app(session_store: Optional[SessionStore] = None, rate_store: Optional[RateConfigStore] = None,
               clock: Callable[[], datetime] = utcnow, billing_model: str = BILLING_MODEL,
               car_spots: int = CAR_SPOTS, motorcycle_spots: int = MOTORCYCLE_SPOTS,
               tick_interval: float = TICK_INTERVAL_SECONDS,
               resync_interval: float = RESYNC_INTERVAL_SECONDS) -> FastAPI:
    db = None
    if session_store is None or rate_store is None:
        db = database.connect()
        session_store = session_store or MongoSessionStore(db)
        rate_store = rate_store or MongoRateConfigStore(db)

    def build_service(user_id: str) -> ParkingService:
        return ParkingService(
            user_id, session_store, rate_store,
            car_spots=car_spots, motorcycle_spots=motorcycle_spots,
            billing=get_policy(billing_model), clock=clock,
            tick_interval=tick_interval, resync_interval=resync_interval,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if db is not None:
            await run_in_threadpool(database.ensure_indexes, db)
        yield
        await app.state.contexts.close_all()

    app = FastAPI(
        title="Parking Engine API",
        description="Учёт занятости парковочных мест и стоимости стоянки",
        version=__version__,
        lifespan=lifespan)
    app.state.contexts = UserContexts(build_service)

    # Настройка CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ParkingError)
    async def parking_error_handler(request: Request, exc: ParkingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    async def get_service(request: Request, x_user_id: str = Header(...)) -> ParkingService:
        return await request.app.state.contexts.get(x_user_id)

    @app.post("/api/vehicle/park")
    async def park_vehicle(vehicle: ParkRequest, service: ParkingService = Depends(get_service)):
        """Регистрация заезда на первое свободное место"""
        spot_id = await service.park(vehicle.vehicle_type, vehicle.license_plate, vehicle.phone_number)
        return {"status": "success", "data": spot_to_dict(service.registry.get(spot_id))}

    @app.post("/api/spots/{spot_id}/release")
    async def release_spot(spot_id: int, service: ParkingService = Depends(get_service)):
        """Обработка выезда и расчет оплаты"""
        receipt = await service.release(spot_id)
        return {"status": "success", "data": receipt_to_dict(receipt)}

    @app.get("/api/vehicle/search")
    async def search_vehicle(plate: str = Query(..., min_length=1),
                             service: ParkingService = Depends(get_service)):
        spots = service.search(plate)
        return {"status": "success", "data": [spot_to_dict(spot) for spot in spots]}

    @app.get("/api/parking/status")
    async def get_status(vehicle_type: Optional[VehicleClass] = None,
                         service: ParkingService = Depends(get_service)):
        """Текущее состояние парковки"""
        status = service.status(vehicle_type)
        return {
            "status": "success",
            "data": [spot_to_dict(spot) for spot in status["spots"]],
            "available": status["available"],
        }

    @app.get("/api/settings/rates")
    async def get_rates(service: ParkingService = Depends(get_service)):
        rates = service.rates.current()
        return {"status": "success", "data": {
            "car_hourly_rate": float(rates.car_hourly_rate),
            "motorcycle_hourly_rate": float(rates.motorcycle_hourly_rate),
        }}

    @app.put("/api/settings/rates")
    async def update_rates(update: RatesUpdate, service: ParkingService = Depends(get_service)):
        rates = await service.update_rates(update.car_hourly_rate, update.motorcycle_hourly_rate)
        return {"status": "success", "data": {
            "car_hourly_rate": float(rates.car_hourly_rate),
            "motorcycle_hourly_rate": float(rates.motorcycle_hourly_rate),
        }}

    @app.post("/api/sync")
    async def sync(service: ParkingService = Depends(get_service)):
        """Принудительная синхронизация с хранилищем"""
        synced = await service.resync()
        return {"status": "success" if synced else "skipped", "data": {
            "occupied_spots": len(service.registry.occupied()),
        }}

    @app.get("/api/stats/summary")
    async def get_summary(service: ParkingService = Depends(get_service)):
        return {"status": "success", "data": await service.summary()}

    @app.delete("/api/context")
    async def close_context(request: Request, x_user_id: str = Header(...)):
        closed = await request.app.state.contexts.close(x_user_id)
        return {"status": "success", "data": {"closed": closed}}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)

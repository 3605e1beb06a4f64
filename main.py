import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import achievements
import categories
import ledger
import lifecycle
import matcher
import notifications
import profiles
from database import get_store
from errors import CapabilityError, EcoCollectError, ValidationError
from schemas import (
    Achievement, AchievementProgress, AddItems, AssignCollector, Award, CompletePickup,
    CreditTransaction, EwasteCategory, LedgerBalance, Notification, PickupCreate, PickupDetail,
    PickupItem, PickupRequest, Profile, ProfileIn, ProfileUpdate, ScanDecision, ScanIn,
    UpdateStatus,
)
from storage import Store

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        categories.seed_categories(get_store())
        achievements.seed_achievements(get_store())
    except CapabilityError as e:
        logger.error(f"Could not seed catalogs: {e.detail}")
    yield


app = FastAPI(title="EcoCollect API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def current_store() -> Store:
    return get_store()


@app.exception_handler(EcoCollectError)
async def handle_domain_error(request: Request, exc: EcoCollectError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__, "retryable": exc.retryable},
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    # same body as ValidationError raised by the services
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = first.get("msg", "Invalid request")
    if where:
        detail = f"{where}: {detail}"
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"detail": detail, "error": ValidationError.__name__, "retryable": False},
    )


@app.get("/")
def read_root():
    return {"message": "EcoCollect API running"}


@app.get("/schema")
def get_schema():
    # Expose schemas to the database viewer (as per platform conventions)
    return {
        "profiles": Profile.model_json_schema(),
        "pickups": PickupRequest.model_json_schema(),
        "pickup_items": PickupItem.model_json_schema(),
        "credit_transactions": CreditTransaction.model_json_schema(),
        "notifications": Notification.model_json_schema(),
        "ewaste_categories": EwasteCategory.model_json_schema(),
        "achievements": Achievement.model_json_schema(),
    }


# ----- Profiles -----

@app.post("/profiles", response_model=Profile)
def create_profile(payload: ProfileIn, store: Store = Depends(current_store)):
    return profiles.create_profile(store, payload)


@app.get("/profiles/{user_id}", response_model=Profile)
def get_profile(user_id: str, store: Store = Depends(current_store)):
    return profiles.get_profile(store, user_id)


@app.patch("/profiles/{user_id}", response_model=Profile)
def update_profile(user_id: str, payload: ProfileUpdate, store: Store = Depends(current_store)):
    return profiles.update_profile(store, user_id, payload)


@app.get("/profiles/{user_id}/transactions", response_model=List[CreditTransaction])
def list_transactions(user_id: str, limit: int = 20, store: Store = Depends(current_store)):
    return ledger.list_transactions(store, user_id, limit=max(1, min(limit, 100)))


@app.get("/profiles/{user_id}/ledger", response_model=LedgerBalance)
def reconcile_ledger(user_id: str, store: Store = Depends(current_store)):
    return ledger.reconcile(store, user_id)


@app.get("/profiles/{user_id}/notifications", response_model=List[Notification])
def list_notifications(user_id: str, store: Store = Depends(current_store)):
    return notifications.list_notifications(store, user_id)


@app.post("/notifications/{notification_id}/read", response_model=Notification)
def mark_notification_read(notification_id: str, store: Store = Depends(current_store)):
    return notifications.mark_as_read(store, notification_id)


# ----- Scanning -----

@app.get("/achievements", response_model=List[Achievement])
def list_achievements(store: Store = Depends(current_store)):
    return achievements.list_achievements(store)


@app.get("/profiles/{user_id}/achievements", response_model=List[AchievementProgress])
def profile_achievements(user_id: str, store: Store = Depends(current_store)):
    return achievements.user_achievements(store, user_id)


@app.get("/categories", response_model=List[EwasteCategory])
def list_categories(store: Store = Depends(current_store)):
    return categories.list_categories(store)


@app.post("/scan", response_model=ScanDecision)
def scan(payload: ScanIn):
    return matcher.classify(payload.predictions, threshold=payload.threshold)


# ----- Pickups -----

@app.post("/pickups", response_model=PickupDetail)
def create_pickup(payload: PickupCreate, store: Store = Depends(current_store)):
    pickup_id = lifecycle.create_request(
        store, payload.donor_id, payload.location, payload.schedule, payload.items,
        ai_scan_results=payload.ai_scan_results,
    )
    return lifecycle.get_request_detail(store, pickup_id)


@app.get("/pickups", response_model=List[PickupRequest])
def list_pickups(donor_id: Optional[str] = None, collector_id: Optional[str] = None,
                 store: Store = Depends(current_store)):
    if donor_id:
        return lifecycle.list_donor_requests(store, donor_id)
    if collector_id:
        return lifecycle.list_collector_requests(store, collector_id)
    return lifecycle.list_pending_requests(store)


@app.get("/pickups/{pickup_id}", response_model=PickupDetail)
def get_pickup(pickup_id: str, store: Store = Depends(current_store)):
    return lifecycle.get_request_detail(store, pickup_id)


@app.post("/pickups/{pickup_id}/items", response_model=PickupDetail)
def add_pickup_items(pickup_id: str, payload: AddItems, store: Store = Depends(current_store)):
    return lifecycle.add_items(store, pickup_id, payload.items)


@app.post("/pickups/{pickup_id}/assign", response_model=PickupRequest)
def assign_collector(pickup_id: str, payload: AssignCollector, store: Store = Depends(current_store)):
    return lifecycle.assign_collector(store, pickup_id, payload.collector_id)


@app.post("/pickups/{pickup_id}/status", response_model=PickupRequest)
def update_pickup_status(pickup_id: str, payload: UpdateStatus, store: Store = Depends(current_store)):
    return lifecycle.advance_status(store, pickup_id, payload.status)


@app.post("/pickups/{pickup_id}/complete", response_model=Award)
def complete_pickup(pickup_id: str, payload: CompletePickup, store: Store = Depends(current_store)):
    return lifecycle.complete_pickup(store, pickup_id, payload.actual_weight_kg, payload.actual_credits)


@app.get("/test")
def test_database(store: Store = Depends(current_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "store": store.backend,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        response["collections"] = store.collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except CapabilityError as e:
        response["database"] = f"⚠️  Connected but Error: {e.detail[:50]}"

    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

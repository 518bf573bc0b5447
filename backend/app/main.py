from __future__ import annotations

import io
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from care_routing import (
    CareDispatcher,
    CareRoutingError,
    CareStore,
    Coordinates,
    DuplicateAccountError,
    FacilityStatus,
    InvalidRequestError,
    NoFacilityAvailableError,
    RequestKind,
    RequestNotFoundError,
    StoreError,
)
from care_routing.store import ROLE_ADMIN, ROLE_HOSPITAL

from .auth import create_token, hash_password, require_role, verify_password
from .config import QUEUE_SCOPE_ALL, Settings, configure_logging
from .pdf import build_prescription_pdf
from .schemas import (
    CareRequestIn,
    HospitalRegistrationIn,
    LoginIn,
    ResolveIn,
    prescription_out,
    request_out,
)

logger = logging.getLogger(__name__)

SOS_PATH = "/api/sos-request"
SOS_FAILURE_ADVICE = "Please call emergency services directly."

# Most specific first.
ERROR_STATUS = (
    (DuplicateAccountError, 409),
    (InvalidRequestError, 422),
    (NoFacilityAvailableError, 503),
    (RequestNotFoundError, 404),
    (StoreError, 500),
)

router = APIRouter()


def get_dispatcher(request: Request) -> CareDispatcher:
    return request.app.state.dispatcher


def get_store(request: Request) -> CareStore:
    return request.app.state.store


def seed_accounts(store: CareStore, settings: Settings) -> None:
    if not settings.seed_default_accounts:
        return
    if not store.get_account(settings.admin_username):
        store.add_account(
            settings.admin_username,
            hash_password(settings.admin_password),
            ROLE_ADMIN,
            status=FacilityStatus.APPROVED,
        )
        logger.info("Created default admin account %s", settings.admin_username)
    if not store.get_account(settings.default_hospital_name):
        store.add_account(
            settings.default_hospital_name,
            hash_password(settings.default_hospital_password),
            ROLE_HOSPITAL,
            status=FacilityStatus.APPROVED,
            location=Coordinates(settings.default_hospital_lat, settings.default_hospital_lng),
        )
        logger.info("Created default hospital %s for routing", settings.default_hospital_name)


async def care_error_handler(request: Request, exc: CareRoutingError) -> JSONResponse:
    status_code = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500 and not isinstance(exc, NoFacilityAvailableError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        message = "Internal server error. Please try again."
    else:
        message = str(exc)

    return _error_response(request, status_code, message, exc.code)


def _error_response(request: Request, status_code: int, message: str, code: str, **extra) -> JSONResponse:
    if request.url.path == SOS_PATH:
        message = f"{message} {SOS_FAILURE_ADVICE}"
    return JSONResponse(status_code=status_code, content={"detail": message, "code": code, **extra})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    fields = ", ".join(
        ".".join(str(part) for part in err.get("loc", ()) if part != "body") or "body" for err in errors
    )
    return _error_response(request, 422, f"Invalid request: check {fields}.", "invalid_request", errors=errors)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s failed unexpectedly", request.method, request.url.path)
    return _error_response(request, 500, "Internal server error. Please try again.", "server_error")


def _submit(dispatcher: CareDispatcher, kind: RequestKind, body: CareRequestIn) -> dict:
    if body.location is None:
        raise InvalidRequestError("location is required")
    assignment = dispatcher.dispatch(
        kind,
        requester_name=body.patient_name,
        reason=body.reason,
        criticality=body.criticality,
        point=body.location.to_coordinates(),
    )
    label = "SOS request" if kind == RequestKind.SOS else "Doctor request"
    return {
        "message": f"{label} dispatched.",
        "hospitalName": assignment.facility.name,
        "distance": assignment.distance_km,
    }


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/api/register/hospital", status_code=201)
def register_hospital(body: HospitalRegistrationIn, store: CareStore = Depends(get_store)):
    location = body.location.to_coordinates() if body.location else None
    facility_id = store.add_account(
        body.username.strip(),
        hash_password(body.password),
        ROLE_HOSPITAL,
        status=FacilityStatus.PENDING,
        location=location,
    )
    logger.info("Registered hospital %s (id=%s), awaiting approval", body.username, facility_id)
    return {"message": "Hospital registered; awaiting approval.", "id": facility_id, "status": FacilityStatus.PENDING.value}


@router.post("/api/login")
def login(body: LoginIn, request: Request, store: CareStore = Depends(get_store)):
    account = store.get_account(body.username, body.role)
    if not account or not verify_password(body.password, account["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid username or password.")

    if body.location is not None and account["role"] == ROLE_HOSPITAL:
        store.update_location(account["id"], body.location.to_coordinates())

    token = create_token(
        {"user_id": account["id"], "username": account["username"], "role": account["role"]},
        request.app.state.settings,
    )
    return {
        "message": "Login successful.",
        "token": token,
        "username": account["username"],
        "role": account["role"],
        "status": account["status"],
    }


@router.patch("/api/hospitals/{facility_id}/approve")
def approve_hospital(
    facility_id: int,
    store: CareStore = Depends(get_store),
    user: dict = Depends(require_role(ROLE_ADMIN)),
):
    if not store.approve_facility(facility_id):
        raise HTTPException(status_code=404, detail="Hospital not found.")
    logger.info("Hospital %s approved by %s", facility_id, user["username"])
    return {"ok": True, "id": facility_id, "status": FacilityStatus.APPROVED.value}


@router.post(SOS_PATH, status_code=201)
def sos_request(body: CareRequestIn, dispatcher: CareDispatcher = Depends(get_dispatcher)):
    return _submit(dispatcher, RequestKind.SOS, body)


@router.post("/api/doctor-request", status_code=201)
def doctor_request(body: CareRequestIn, dispatcher: CareDispatcher = Depends(get_dispatcher)):
    return _submit(dispatcher, RequestKind.DOCTOR_CONNECT, body)


def _queue_facility(request: Request, user: dict) -> Optional[int]:
    if request.app.state.settings.queue_scope == QUEUE_SCOPE_ALL:
        return None
    return int(user["user_id"])


@router.get("/api/doctor-requests")
def pending_requests(
    request: Request,
    dispatcher: CareDispatcher = Depends(get_dispatcher),
    user: dict = Depends(require_role(ROLE_HOSPITAL)),
):
    return [request_out(r) for r in dispatcher.list_pending(_queue_facility(request, user))]


@router.get("/api/doctor-requests/summary")
def pending_summary(
    request: Request,
    dispatcher: CareDispatcher = Depends(get_dispatcher),
    user: dict = Depends(require_role(ROLE_HOSPITAL)),
):
    return dispatcher.queue_summary(_queue_facility(request, user))


@router.put("/api/doctor-request/{request_id}/resolve")
def resolve_request(
    request_id: int,
    request: Request,
    body: ResolveIn,
    dispatcher: CareDispatcher = Depends(get_dispatcher),
    user: dict = Depends(require_role(ROLE_HOSPITAL)),
):
    prescription = dispatcher.resolve(
        request_id,
        body.prescription,
        body.author_name or user["username"],
        facility_id=_queue_facility(request, user),
    )
    if prescription is None:
        raise RequestNotFoundError(f"Request {request_id} not found or already resolved.")
    return {"ok": True, "requestId": request_id, "prescriptionId": prescription.prescription_id}


def _prescription_facility(request: Request, user: dict) -> Optional[int]:
    if user.get("role") == ROLE_ADMIN:
        return None
    return _queue_facility(request, user)


@router.get("/api/prescriptions/{patient_name}")
def patient_prescriptions(
    patient_name: str,
    request: Request,
    dispatcher: CareDispatcher = Depends(get_dispatcher),
    user: dict = Depends(require_role(ROLE_HOSPITAL, ROLE_ADMIN)),
):
    facility_id = _prescription_facility(request, user)
    return [prescription_out(p) for p in dispatcher.prescriptions_for(patient_name, facility_id=facility_id)]


@router.get("/api/prescriptions/{prescription_id}/pdf")
def prescription_pdf(
    prescription_id: int,
    request: Request,
    store: CareStore = Depends(get_store),
    user: dict = Depends(require_role(ROLE_HOSPITAL, ROLE_ADMIN)),
):
    facility_id = _prescription_facility(request, user)
    prescription = store.get_prescription(prescription_id)
    care_request = store.get_request(prescription.request_id) if prescription else None
    if prescription is None or (
        facility_id is not None and (care_request is None or care_request.facility_id != facility_id)
    ):
        raise RequestNotFoundError(f"Prescription {prescription_id} not found.")
    content = build_prescription_pdf(prescription, care_request)
    return StreamingResponse(
        io.BytesIO(content),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=prescription_{prescription_id}.pdf"},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    store = CareStore(settings.db_path)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        store.open()
        seed_accounts(store, settings)
        try:
            yield
        finally:
            store.close()

    app = FastAPI(title="Care Routing API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.dispatcher = CareDispatcher(store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CareRoutingError, care_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)
    return app


app = create_app()

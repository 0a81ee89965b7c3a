from datetime import datetime, timedelta, timezone
import logging
import os
from typing import List
import pyotp

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

import models
import schemas
from biometric import SimulatedBiometricVerifier
from database import engine, get_db
from errors import CollaboratorFailure, InvalidTransition, NotFound, PaymentDeclined, TicketingError
from payments import MockPaymentGateway
from pricing import PriceCalculator
from qr_codec import QRCodec
from signing import TicketSigner
from store import SqlTicketStore
from ticketing import TicketService
from validation import TicketValidator

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("nightlife.api")

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="Nightlife Ticketing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
QR_SIGNING_SECRET = os.getenv("QR_SIGNING_SECRET", "dev-qr-signing-secret")
QR_MAX_AGE_HOURS = int(os.getenv("QR_MAX_AGE_HOURS", "48"))
APP_COMMISSION_RATE = os.getenv("APP_COMMISSION_RATE", "0.05")
SECURE_TICKET_MULTIPLIER = os.getenv("SECURE_TICKET_MULTIPLIER", "1.5")
MOCK_PAYMENT_FAILURE_RATE = float(os.getenv("MOCK_PAYMENT_FAILURE_RATE", "0"))
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
SCANNER_USERNAME = os.getenv("SCANNER_USERNAME", "scanner")
SCANNER_PASSWORD = os.getenv("SCANNER_PASSWORD", "scan123")
SCANNER_TOKEN_HOURS = int(os.getenv("SCANNER_TOKEN_HOURS", "12"))
ADMIN_2FA_REQUIRED = os.getenv("ADMIN_2FA_REQUIRED", "false").lower() == "true"
ADMIN_TOTP_SECRET = os.getenv("ADMIN_TOTP_SECRET", "JBSWY3DPEHPK3PXP")
AUTH_DISABLED = os.getenv("AUTH_DISABLED", "false").lower() == "true"

# built once per process and shared by every request
signer = TicketSigner(QR_SIGNING_SECRET)
codec = QRCodec(max_age_ms=QR_MAX_AGE_HOURS * 60 * 60 * 1000)
price_calculator = PriceCalculator(commission_rate=APP_COMMISSION_RATE, secure_multiplier=SECURE_TICKET_MULTIPLIER)
biometric = SimulatedBiometricVerifier()
payment_gateway = MockPaymentGateway(failure_rate=MOCK_PAYMENT_FAILURE_RATE)

admin_bearer = HTTPBearer(auto_error=False)
scanner_bearer = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def validate_totp(secret: str, otp: str | None) -> bool:
    if not otp:
        return False
    totp = pyotp.TOTP(secret)
    return totp.verify(otp, valid_window=1)


def get_admin_user(credentials: HTTPAuthorizationCredentials | None = Depends(admin_bearer)) -> str:
    if AUTH_DISABLED:
        return ADMIN_USERNAME
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing admin token")
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        username: str | None = payload.get("sub")
        role: str | None = payload.get("role")
        if not username or role != "admin":
            raise HTTPException(status_code=401, detail="Invalid admin token")
        return username
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid admin token") from exc


def get_scanner_user(credentials: HTTPAuthorizationCredentials | None = Depends(scanner_bearer)) -> dict:
    if AUTH_DISABLED:
        return {"username": SCANNER_USERNAME, "role": "scanner"}
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing scanner token")
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        username: str | None = payload.get("sub")
        role: str | None = payload.get("role")
        if not username or role not in {"scanner", "admin"}:
            raise HTTPException(status_code=401, detail="Invalid scanner token")
        return {"username": username, "role": role}
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid scanner token") from exc


def get_ticket_service(db: Session = Depends(get_db)) -> TicketService:
    return TicketService(
        signer=signer,
        codec=codec,
        pricing=price_calculator,
        store=SqlTicketStore(db),
        biometric=biometric,
        payments=payment_gateway,
    )


def get_ticket_validator(db: Session = Depends(get_db)) -> TicketValidator:
    return TicketValidator(signer=signer, codec=codec, store=SqlTicketStore(db), biometric=biometric)


def raise_http(exc: Exception):
    if isinstance(exc, NotFound):
        raise HTTPException(status_code=404, detail=exc.reason) from exc
    if isinstance(exc, InvalidTransition):
        raise HTTPException(status_code=409, detail=exc.reason) from exc
    if isinstance(exc, PaymentDeclined):
        raise HTTPException(status_code=402, detail=exc.reason) from exc
    if isinstance(exc, CollaboratorFailure):
        logger.error("Collaborator failure: %s", exc.reason, exc_info=exc.__cause__ or exc)
        raise HTTPException(status_code=502, detail=exc.reason) from exc
    if isinstance(exc, TicketingError):
        raise HTTPException(status_code=400, detail=exc.reason) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise exc


def get_event_or_404(event_id: str, db: Session) -> models.Event:
    event = db.query(models.Event).filter(models.Event.id == event_id).first()
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.get("/")
def read_root():
    return {"message": "Welcome to the Nightlife Ticketing API"}


@app.get("/auth/config")
def auth_config():
    return {"auth_disabled": AUTH_DISABLED}


@app.post("/auth/admin-login", response_model=schemas.AdminLoginResponse)
def admin_login(req: schemas.AdminLoginRequest):
    if req.username != ADMIN_USERNAME or req.password != ADMIN_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if ADMIN_2FA_REQUIRED and not validate_totp(ADMIN_TOTP_SECRET, req.otp):
        raise HTTPException(status_code=401, detail="Invalid OTP")
    token = create_access_token(
        data={"sub": req.username, "role": "admin"},
        expires_delta=timedelta(hours=8),
    )
    return schemas.AdminLoginResponse(access_token=token)


@app.post("/auth/scanner-login", response_model=schemas.ScannerLoginResponse)
def scanner_login(req: schemas.ScannerLoginRequest):
    if req.username != SCANNER_USERNAME or req.password != SCANNER_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid scanner credentials")
    token = create_access_token(
        data={"sub": req.username, "role": "scanner"},
        expires_delta=timedelta(hours=SCANNER_TOKEN_HOURS),
    )
    return schemas.ScannerLoginResponse(access_token=token)


@app.post("/events/", response_model=schemas.Event)
def create_event(
    event: schemas.EventCreate,
    db: Session = Depends(get_db),
    admin: str = Depends(get_admin_user),
):
    db_event = models.Event(**event.model_dump())
    db.add(db_event)
    db.commit()
    db.refresh(db_event)
    logger.info("Event %s created by %s", db_event.id, admin)
    return db_event


@app.get("/events/", response_model=List[schemas.Event])
def list_events(db: Session = Depends(get_db)):
    return db.query(models.Event).order_by(models.Event.starts_at.desc()).all()


@app.get("/events/{event_id}", response_model=schemas.Event)
def get_event(event_id: str, db: Session = Depends(get_db)):
    return get_event_or_404(event_id, db)


@app.post("/events/{event_id}/quote", response_model=schemas.Quote)
def quote_tickets(event_id: str, req: schemas.QuoteRequest, db: Session = Depends(get_db)):
    event = get_event_or_404(event_id, db)
    try:
        return price_calculator.quote(event.base_price or 0, req.ticket_type, req.quantity, req.payment_method)
    except ValueError as exc:
        raise_http(exc)


@app.post("/tickets/purchase", response_model=schemas.Ticket)
async def purchase_tickets(
    req: schemas.TicketPurchaseRequest,
    db: Session = Depends(get_db),
    service: TicketService = Depends(get_ticket_service),
):
    event = await run_in_threadpool(get_event_or_404, req.event_id, db)
    try:
        return await service.purchase(
            event,
            buyer_id=req.buyer_id,
            buyer_name=req.buyer_name,
            buyer_email=req.buyer_email,
            ticket_type=req.ticket_type,
            quantity=req.quantity,
            payment_method=req.payment_method,
        )
    except (TicketingError, ValueError) as exc:
        raise_http(exc)


@app.get("/tickets/{ticket_id}", response_model=schemas.Ticket)
async def get_ticket(ticket_id: str, service: TicketService = Depends(get_ticket_service)):
    try:
        return await service.get(ticket_id)
    except TicketingError as exc:
        raise_http(exc)


@app.get("/tickets/code/{ticket_code}", response_model=schemas.Ticket)
async def get_ticket_by_code(
    ticket_code: str,
    service: TicketService = Depends(get_ticket_service),
    scanner: dict = Depends(get_scanner_user),
):
    try:
        return await service.get_by_code(ticket_code)
    except TicketingError as exc:
        raise_http(exc)


@app.get("/tickets/{ticket_id}/validations", response_model=List[schemas.TicketValidation])
async def list_ticket_validations(
    ticket_id: str,
    service: TicketService = Depends(get_ticket_service),
    admin: str = Depends(get_admin_user),
):
    try:
        ticket = await service.get(ticket_id)
    except TicketingError as exc:
        raise_http(exc)
    return ticket.validation_history


@app.post("/tickets/{ticket_id}/qr", response_model=schemas.Ticket)
async def refresh_ticket_qr(ticket_id: str, service: TicketService = Depends(get_ticket_service)):
    try:
        return await service.refresh_qr(ticket_id)
    except TicketingError as exc:
        raise_http(exc)


@app.post("/tickets/validate", response_model=schemas.ValidationResult)
async def validate_ticket(
    req: schemas.ValidateTicketRequest,
    validator: TicketValidator = Depends(get_ticket_validator),
    scanner: dict = Depends(get_scanner_user),
):
    return await validator.validate(
        req.qr_code,
        req.biometric_data,
        validator_id=scanner["username"],
        location=req.location,
    )


@app.post("/tickets/{ticket_id}/cancel", response_model=schemas.Ticket)
async def cancel_ticket(
    ticket_id: str,
    req: schemas.CancelTicketRequest,
    service: TicketService = Depends(get_ticket_service),
    admin: str = Depends(get_admin_user),
):
    try:
        return await service.cancel(ticket_id, req.reason, actor=admin)
    except (TicketingError, ValueError) as exc:
        raise_http(exc)


@app.post("/tickets/{ticket_id}/refund", response_model=schemas.Ticket)
async def refund_ticket(
    ticket_id: str,
    req: schemas.RefundTicketRequest,
    service: TicketService = Depends(get_ticket_service),
    admin: str = Depends(get_admin_user),
):
    try:
        return await service.refund(ticket_id, req.reason, actor=admin)
    except (TicketingError, ValueError) as exc:
        raise_http(exc)


@app.get("/event/{event_id}/tickets", response_model=List[schemas.Ticket])
async def list_event_tickets(
    event_id: str,
    service: TicketService = Depends(get_ticket_service),
    admin: str = Depends(get_admin_user),
):
    return await service.list_event_tickets(event_id)


@app.post("/events/{event_id}/expire-tickets", response_model=schemas.ExpireTicketsResponse)
async def expire_event_tickets(
    event_id: str,
    db: Session = Depends(get_db),
    service: TicketService = Depends(get_ticket_service),
    admin: str = Depends(get_admin_user),
):
    await run_in_threadpool(get_event_or_404, event_id, db)
    expired = await service.expire_event(event_id)
    return schemas.ExpireTicketsResponse(event_id=event_id, expired=expired)


@app.get("/event/{event_id}/stats", response_model=schemas.EventStatsResponse)
async def event_stats(
    event_id: str,
    db: Session = Depends(get_db),
    service: TicketService = Depends(get_ticket_service),
    admin: str = Depends(get_admin_user),
):
    await run_in_threadpool(get_event_or_404, event_id, db)
    return await service.event_stats(event_id)


@app.get("/users/{buyer_id}/tickets", response_model=List[schemas.Ticket])
async def list_user_tickets(buyer_id: str, service: TicketService = Depends(get_ticket_service)):
    return await service.list_user_tickets(buyer_id)

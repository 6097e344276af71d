from __future__ import annotations
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable
import hmac
import logging
import uuid
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from settings import Settings, load_settings, configure_logging
from authz.engine import can, roles_for
from availability.period import BookingPeriod
from availability.roster import VolunteerRoster
from bookings.ledger import BookingLedger, WriteConflict
from bookings.service import BookingRejected, BookingRequest, BookingService
from bookings.youth import YouthRosterService
from gates.origin import is_allowed_country, is_allowed_origin
from gates.rate_limit import RateLimiter, client_address
from gates.verification import RecaptchaVerifier
from notifications.reminders import ReminderDispatcher, run_reminder_sweep
from observability import metrics
from state.repository import InMemoryStore, StoreUnavailable, initialise_store
from state.seed import load_volunteer_roster
from verbs.registry import VerbContext, VerbResult, run_verb

logger = logging.getLogger(__name__)

STATUS_BY_REASON = {
    "invalid_slot": 400,
    "missing_contact_method": 400,
    "missing_field": 400,
    "verification_failed": 400,
    "unknown_volunteer": 400,
    "unsupported_method": 400,
    "origin_forbidden": 403,
    "not_assigned_volunteer": 403,
    "booking_not_found": 404,
    "volunteer_not_found": 404,
    "no_volunteer_available": 409,
    "no_youth_volunteer_available": 409,
    "slot_full": 409,
    "slot_busy": 409,
    "volunteer_already_booked": 409,
    "write_conflict": 409,
    "rate_limited": 429,
}

# Legacy action names sent by the admin and youth front ends
ADMIN_ACTIONS = {
    "replaceAll": "bookings.replace_all",
    "addBooking": "bookings.add",
    "removeBooking": "bookings.remove",
    "clearDate": "bookings.clear_date",
    "clearAll": "bookings.clear_all",
}
YOUTH_ACTIONS = {
    "register": "youth.register",
    "updateAvailability": "youth.update_availability",
    "addSlot": "youth.add_slot",
    "removeSlot": "youth.remove_slot",
}


class BookingBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slot_key: str = Field(default="", alias="slotKey")
    contact_method: str | None = Field(default=None, alias="contactMethod")
    name: str = ""
    contact_info: str = Field(default="", alias="contactInfo")
    reminder_email: str | None = Field(default=None, alias="reminderEmail")
    recaptcha_token: str | None = Field(default=None, alias="recaptchaToken")
    recaptcha_v3_token: str | None = Field(default=None, alias="recaptchaV3Token")


class ActionBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str


def _secret_matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def _error(reason: str, message: str, correlation_id: str | None = None, status: int | None = None) -> JSONResponse:
    body = {"error": message, "reason": reason}
    if correlation_id:
        body["correlationId"] = correlation_id
    return JSONResponse(status_code=status or STATUS_BY_REASON.get(reason, 400), content=body)


def _verb_response(result: VerbResult, correlation_id: str) -> JSONResponse:
    if result.ok:
        return JSONResponse(content={"success": True, "correlationId": correlation_id, **(result.data or {})})
    error = result.error or "error"
    if error.startswith("authz_denied"):
        return _error("authz_denied", error, correlation_id, 403)
    if error.startswith("validation_error"):
        return _error("validation_error", error, correlation_id, 400)
    message = (result.data or {}).get("message", error)
    return _error(error, message, correlation_id)


def _admin_args(action: str, body: dict) -> dict:
    if action == "replaceAll":
        return {"bookings": body.get("bookings") or []}
    if action == "addBooking":
        return {"booking": body.get("booking") or {}, "assignedVolunteer": body.get("assignedVolunteer")}
    return body


def create_app(
    settings: Settings | None = None,
    store: InMemoryStore | None = None,
    roster: VolunteerRoster | None = None,
    verifier: RecaptchaVerifier | None = None,
    limiter: RateLimiter | None = None,
    dispatcher: ReminderDispatcher | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    store = store if store is not None else initialise_store(settings.database_url)
    roster = roster or load_volunteer_roster(settings.roster_path)
    period = BookingPeriod.from_settings(settings)
    verifier = verifier or RecaptchaVerifier(
        settings.recaptcha_secret, settings.recaptcha_v3_secret, settings.recaptcha_min_score
    )
    limiter = limiter or RateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds)
    dispatcher = dispatcher or ReminderDispatcher(settings.resend_api_key, settings.from_email, tz=settings.timezone)
    clock = clock or (lambda: datetime.now(timezone.utc))

    ledger = BookingLedger(store, retries=settings.booking_write_retries)
    service = BookingService(
        ledger,
        period,
        roster,
        verifier=verifier,
        limiter=limiter,
        on_booked=dispatcher.send_confirmation,
        lock_ttl_seconds=settings.lock_ttl_seconds,
    )
    youth = YouthRosterService(ledger, period, lock_ttl_seconds=settings.lock_ttl_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    app = FastAPI(title="Youth Count Outreach Scheduler", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.bookings = service
    app.state.youth = youth
    app.state.limiter = limiter
    app.state.dispatcher = dispatcher

    @app.exception_handler(BookingRejected)
    async def booking_rejected(request: Request, exc: BookingRejected):
        return _error(exc.reason, exc.message)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(request: Request, exc: StoreUnavailable):
        logger.error("Store unavailable: %s", exc)
        return _error("store_unavailable", "Service temporarily unavailable. Please try again.", status=503)

    @app.exception_handler(WriteConflict)
    async def write_conflict(request: Request, exc: WriteConflict):
        return _error("write_conflict", "Bookings changed while saving. Please try again.")

    def is_admin(request: Request) -> bool:
        return _secret_matches(request.headers.get("x-admin-secret"), settings.admin_secret)

    def youth_identity(request: Request) -> str | None:
        username = (request.headers.get("x-youth-username") or "").strip().lower()
        if username and _secret_matches(request.headers.get("x-youth-secret"), settings.youth_password):
            return username
        return None

    def youth_roles(username: str) -> list[str]:
        roles = ["youth_volunteer", "volunteer"]
        if username in {u.lower() for u in settings.youth_admin_usernames}:
            roles.append("youth_admin")
        return roles

    def client_key(request: Request) -> str:
        return client_address(request.headers.get("x-forwarded-for"), request.headers.get("x-real-ip"))

    @app.get("/health")
    def health():
        return {"ok": True, "time": clock().isoformat()}

    @app.get("/metrics")
    def get_metrics():
        return metrics.snapshot()

    @app.get("/api/slots")
    def list_slots(request: Request):
        out: dict[str, Any] = {
            "availableSlots": service.list_slots(),
            "period": service.period_info(),
        }
        if is_admin(request):
            out.update(service.admin_view())
        return out

    @app.post("/api/slots")
    def book(body: BookingBody, request: Request):
        correlation_id = uuid.uuid4().hex
        if not is_allowed_origin(request.headers.get("origin"), request.headers.get("referer"), settings.allowed_origins):
            metrics.inc("bookings.rejected.origin_forbidden")
            return _error("origin_forbidden", "Forbidden", correlation_id)
        booking = service.book(
            BookingRequest(
                slot_key=body.slot_key,
                contact_method=body.contact_method,
                name=body.name,
                contact_info=body.contact_info,
                reminder_email=body.reminder_email,
                recaptcha_token=body.recaptcha_token,
                recaptcha_v3_token=body.recaptcha_v3_token,
            ),
            correlation_id,
            client_key=client_key(request),
        )
        return {
            "success": True,
            "correlationId": correlation_id,
            "booking": booking.to_record(),
            "assignedVolunteerName": booking.assigned_volunteer_name,
        }

    @app.put("/api/slots")
    def admin_action(body: ActionBody, request: Request):
        correlation_id = uuid.uuid4().hex
        if not is_admin(request):
            return _error("unauthorized", "Unauthorized", correlation_id, 401)
        verb = ADMIN_ACTIONS.get(body.action, body.action)
        args = _admin_args(body.action, body.model_extra or {})
        ctx = VerbContext(correlation_id=correlation_id, actor_id="admin", actor_roles=["admin"], bookings=service, youth=youth)
        return _verb_response(run_verb(verb, args, ctx), correlation_id)

    @app.delete("/api/slots")
    def clear_all(request: Request):
        correlation_id = uuid.uuid4().hex
        if not is_admin(request):
            return _error("unauthorized", "Unauthorized", correlation_id, 401)
        ctx = VerbContext(correlation_id=correlation_id, actor_id="admin", actor_roles=["admin"], bookings=service, youth=youth)
        return _verb_response(run_verb("bookings.clear_all", {}, ctx), correlation_id)

    @app.post("/api/bookings/{booking_id}/complete")
    def complete(booking_id: str, request: Request):
        correlation_id = uuid.uuid4().hex
        if is_admin(request):
            actor, roles = "admin", ["admin"]
        else:
            username = youth_identity(request)
            if not username:
                return _error("unauthorized", "Unauthorized", correlation_id, 401)
            actor, roles = username, youth_roles(username)
        ctx = VerbContext(correlation_id=correlation_id, actor_id=actor, actor_roles=roles, bookings=service, youth=youth)
        return _verb_response(run_verb("bookings.complete", {"bookingId": booking_id}, ctx), correlation_id)

    @app.get("/api/youth-volunteers")
    def youth_view(request: Request):
        correlation_id = uuid.uuid4().hex
        username = youth_identity(request)
        if not username:
            return _error("unauthorized", "Unauthorized", correlation_id, 401)
        me = youth.ensure(username, correlation_id)
        return {
            "correlationId": correlation_id,
            "volunteer": {"username": me.id, **me.to_record()},
            "volunteers": youth.view(),
            "isAdmin": "youth_admin" in youth_roles(username),
        }

    @app.post("/api/youth-volunteers")
    def youth_action(body: ActionBody, request: Request):
        correlation_id = uuid.uuid4().hex
        username = youth_identity(request)
        if not username:
            return _error("unauthorized", "Unauthorized", correlation_id, 401)
        verb = YOUTH_ACTIONS.get(body.action, body.action)
        if not verb.startswith("youth."):
            return _error("invalid_action", "Invalid action", correlation_id, 400)
        args = dict(body.model_extra or {})
        target = args.pop("volunteerId", None) or args.get("username") or username
        args["username"] = str(target).strip().lower()
        ctx = VerbContext(
            correlation_id=correlation_id,
            actor_id=username,
            actor_roles=youth_roles(username),
            bookings=service,
            youth=youth,
        )
        return _verb_response(run_verb(verb, args, ctx), correlation_id)

    def rate_limit_response(request: Request, consume: bool) -> JSONResponse:
        decision = limiter.check(client_key(request), consume=consume)
        reset = datetime.fromtimestamp(decision.reset_at, tz=timezone.utc)
        return JSONResponse(
            status_code=200 if decision.allowed else 429,
            content={
                "allowed": decision.allowed,
                "remaining": decision.remaining,
                "resetTime": reset.isoformat(),
                "message": "OK" if decision.allowed else "Too many submissions. Please try again later.",
            },
            headers={
                "X-RateLimit-Limit": str(limiter.max_requests),
                "X-RateLimit-Remaining": str(decision.remaining),
                "X-RateLimit-Reset": str(int(decision.reset_at)),
            },
        )

    @app.get("/rate-limit")
    def rate_limit_status(request: Request):
        return rate_limit_response(request, consume=False)

    @app.post("/rate-limit")
    def rate_limit_consume(request: Request):
        return rate_limit_response(request, consume=True)

    @app.get("/geo-check")
    def geo_check(request: Request):
        country = request.headers.get("x-vercel-ip-country") or ""
        allowed = is_allowed_country(country)
        return JSONResponse(
            content={
                "allowed": allowed,
                "reason": "" if allowed else "outside_us",
                "country": country,
                "region": request.headers.get("x-vercel-ip-region") or "",
            },
            headers={"Cache-Control": "no-store, no-cache, must-revalidate"},
        )

    @app.post("/reminders/send")
    def send_reminders(request: Request):
        correlation_id = uuid.uuid4().hex
        auth = request.headers.get("authorization") or ""
        bearer = auth[7:] if auth.startswith("Bearer ") else None
        from_cron = request.headers.get("x-vercel-cron") == "1" or _secret_matches(bearer, settings.cron_secret)
        allowed, _ = can(roles_for(admin=is_admin(request), cron=from_cron), "reminders.send")
        if not allowed:
            return _error("unauthorized", "Unauthorized", correlation_id, 401)
        result = run_reminder_sweep(store, service.ledger.list(), dispatcher, clock())
        logger.info("Reminder sweep sent %d, %d errors", len(result.sent), len(result.errors))
        return {"correlationId": correlation_id, **result.to_dict()}

    return app


app = create_app()

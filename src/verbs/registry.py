from __future__ import annotations
from typing import Dict, Type, Any
from pydantic import BaseModel, ConfigDict, ValidationError, Field
from state.event_log import log
from authz.engine import can as authz_can
from bookings.service import BookingService, BookingRejected
from bookings.youth import YouthRosterService
from bookings.ledger import WriteConflict


class VerbContext(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    correlation_id: str
    actor_id: str
    actor_roles: list[str]
    bookings: BookingService
    youth: YouthRosterService | None = None
    shard: str | None = None


class VerbResult(BaseModel):
    ok: bool
    data: Any | None = None
    error: str | None = None


class BaseVerb:
    name: str = "base"
    schema: Type[BaseModel] = BaseModel
    authz_action: str | None = None
    # args field naming the record the verb touches (ownership checks)
    resource_field: str | None = None

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        raise NotImplementedError


VERBS: Dict[str, Type[BaseVerb]] = {}


def register(verb: Type[BaseVerb]):
    VERBS[verb.name] = verb
    return verb


def _rejected(exc: BookingRejected) -> VerbResult:
    return VerbResult(ok=False, error=exc.reason, data={"message": exc.message})

# ---- Booking admin verbs ----

class ReplaceAllArgs(BaseModel):
    bookings: list[dict[str, Any]]


@register
class ReplaceAllVerb(BaseVerb):
    name = "bookings.replace_all"
    schema = ReplaceAllArgs
    authz_action = "bookings.manage"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            bookings = ctx.bookings.replace_all(args["bookings"], ctx.correlation_id, ctx.actor_id)
        except BookingRejected as e:
            return _rejected(e)
        return VerbResult(ok=True, data={"count": len(bookings)})


class AddBookingArgs(BaseModel):
    booking: dict[str, Any]
    assigned_volunteer: str | None = Field(default=None, alias="assignedVolunteer")

    model_config = ConfigDict(populate_by_name=True)


@register
class AddBookingVerb(BaseVerb):
    name = "bookings.add"
    schema = AddBookingArgs
    authz_action = "bookings.manage"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            booking = ctx.bookings.add(args["booking"], ctx.correlation_id, ctx.actor_id, args.get("assigned_volunteer"))
        except BookingRejected as e:
            return _rejected(e)
        return VerbResult(ok=True, data={"booking": booking.to_record()})


class RemoveBookingArgs(BaseModel):
    slot_key: str = Field(alias="slotKey")
    volunteer_id: str | None = Field(default=None, alias="volunteerId")

    model_config = ConfigDict(populate_by_name=True)


@register
class RemoveBookingVerb(BaseVerb):
    name = "bookings.remove"
    schema = RemoveBookingArgs
    authz_action = "bookings.manage"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            removed = ctx.bookings.remove(args["slot_key"], ctx.correlation_id, ctx.actor_id, args.get("volunteer_id"))
        except BookingRejected as e:
            return _rejected(e)
        if not removed:
            return VerbResult(ok=False, error="booking_not_found")
        return VerbResult(ok=True, data={"removed": removed.to_record()})


class ClearDateArgs(BaseModel):
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")


@register
class ClearDateVerb(BaseVerb):
    name = "bookings.clear_date"
    schema = ClearDateArgs
    authz_action = "bookings.manage"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        removed = ctx.bookings.clear_date(args["date"], ctx.correlation_id, ctx.actor_id)
        return VerbResult(ok=True, data={"removed": removed})


class ClearAllArgs(BaseModel):
    pass


@register
class ClearAllVerb(BaseVerb):
    name = "bookings.clear_all"
    schema = ClearAllArgs
    authz_action = "bookings.manage"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        removed = ctx.bookings.clear_all(ctx.correlation_id, ctx.actor_id)
        return VerbResult(ok=True, data={"removed": removed})


class CompleteBookingArgs(BaseModel):
    booking_id: str = Field(alias="bookingId")

    model_config = ConfigDict(populate_by_name=True)


@register
class CompleteBookingVerb(BaseVerb):
    name = "bookings.complete"
    schema = CompleteBookingArgs
    authz_action = "bookings.complete"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            booking = ctx.bookings.mark_complete(
                args["booking_id"], ctx.correlation_id, ctx.actor_id, is_admin="admin" in ctx.actor_roles
            )
        except BookingRejected as e:
            return _rejected(e)
        return VerbResult(ok=True, data={"booking": booking.to_record()})

# ---- Youth self-service verbs ----

class YouthRegisterArgs(BaseModel):
    username: str = Field(min_length=1)
    name: str | None = None


@register
class YouthRegisterVerb(BaseVerb):
    name = "youth.register"
    schema = YouthRegisterArgs
    authz_action = "youth.self_service"
    resource_field = "username"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            vol = ctx.youth.register(args["username"], ctx.correlation_id, args.get("name"))
        except BookingRejected as e:
            return _rejected(e)
        return VerbResult(ok=True, data={"volunteer": {"username": vol.id, **vol.to_record()}})


class YouthAvailabilityArgs(BaseModel):
    username: str = Field(min_length=1)
    availability: list[str]


@register
class YouthUpdateAvailabilityVerb(BaseVerb):
    name = "youth.update_availability"
    schema = YouthAvailabilityArgs
    authz_action = "youth.self_service"
    resource_field = "username"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            vol = ctx.youth.update_availability(args["username"], args["availability"], ctx.correlation_id)
        except BookingRejected as e:
            return _rejected(e)
        return VerbResult(ok=True, data={"volunteer": {"username": vol.id, **vol.to_record()}})


class YouthSlotArgs(BaseModel):
    username: str = Field(min_length=1)
    slot_key: str = Field(alias="slotKey")

    model_config = ConfigDict(populate_by_name=True)


@register
class YouthAddSlotVerb(BaseVerb):
    name = "youth.add_slot"
    schema = YouthSlotArgs
    authz_action = "youth.self_service"
    resource_field = "username"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            vol = ctx.youth.add_slot(args["username"], args["slot_key"], ctx.correlation_id)
        except BookingRejected as e:
            return _rejected(e)
        return VerbResult(ok=True, data={"volunteer": {"username": vol.id, **vol.to_record()}})


@register
class YouthRemoveSlotVerb(BaseVerb):
    name = "youth.remove_slot"
    schema = YouthSlotArgs
    authz_action = "youth.self_service"
    resource_field = "username"

    @classmethod
    def execute(cls, args: dict, ctx: VerbContext) -> VerbResult:
        try:
            vol = ctx.youth.remove_slot(args["username"], args["slot_key"], ctx.correlation_id)
        except BookingRejected as e:
            return _rejected(e)
        return VerbResult(ok=True, data={"volunteer": {"username": vol.id, **vol.to_record()}})


def run_verb(verb_name: str, raw_args: dict, ctx: VerbContext) -> VerbResult:
    store = ctx.bookings.store
    verb_cls = VERBS.get(verb_name)
    if not verb_cls:
        return VerbResult(ok=False, error="unknown_verb")
    # authz
    if verb_cls.authz_action:
        allowed, reason = authz_can(ctx.actor_roles, verb_cls.authz_action, None, {})
        if not allowed:
            log(store, "authz_denied", ctx.correlation_id, ctx.actor_id, ctx.shard, {"verb": verb_name, "reason": reason})
            return VerbResult(ok=False, error=f"authz_denied:{reason}")
    # validate
    try:
        parsed = verb_cls.schema(**raw_args)
    except ValidationError as e:
        return VerbResult(ok=False, error=f"validation_error:{e}")
    args = parsed.model_dump()
    if verb_cls.authz_action and verb_cls.resource_field:
        allowed, reason = authz_can(ctx.actor_roles, verb_cls.authz_action, args.get(verb_cls.resource_field), {"actor_id": ctx.actor_id})
        if not allowed:
            log(store, "authz_denied", ctx.correlation_id, ctx.actor_id, ctx.shard, {"verb": verb_name, "reason": reason})
            return VerbResult(ok=False, error=f"authz_denied:{reason}")
    try:
        result = verb_cls.execute(args, ctx)
    except WriteConflict:
        result = VerbResult(ok=False, error="write_conflict")
    log(store, "verb_executed", ctx.correlation_id, ctx.actor_id, ctx.shard, {"verb": verb_name, "ok": result.ok})
    return result

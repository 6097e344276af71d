from __future__ import annotations
from typing import Dict, Any, Tuple

# Static role policy
# action -> required role(s)
POLICY = {
    "bookings.manage": ["admin"],
    "bookings.complete": ["admin", "volunteer"],
    "youth.self_service": ["youth_volunteer", "youth_admin"],
    "reminders.send": ["admin", "cron"],
}


def can(actor_roles: list[str], action: str, resource: str | None = None, ctx: Dict[str, Any] | None = None) -> Tuple[bool, str]:
    required = POLICY.get(action)
    if not required:
        return False, f"default_deny: action {action} not in policy"
    if not any(r in actor_roles for r in required):
        return False, f"missing_role: need one of {required}"
    # self-service actions are scoped to the actor's own record
    owner = (ctx or {}).get("actor_id")
    if action == "youth.self_service" and resource and owner and resource != owner and "youth_admin" not in actor_roles:
        return False, "not_owner: youth volunteers may only edit their own record"
    return True, "allow"


def roles_for(
    admin: bool = False,
    youth: bool = False,
    youth_admin: bool = False,
    volunteer: bool = False,
    cron: bool = False,
) -> list[str]:
    roles = []
    if admin:
        roles.append("admin")
    if youth:
        roles.append("youth_volunteer")
    if youth_admin:
        roles.append("youth_admin")
    if volunteer:
        roles.append("volunteer")
    if cron:
        roles.append("cron")
    return roles

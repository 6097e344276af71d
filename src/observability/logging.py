from __future__ import annotations
from typing import Any, Dict
from datetime import datetime, timezone
import json
import logging

_events = logging.getLogger("outreach.events")


def structured_log(event: str, correlation_id: str, data: Dict[str, Any], level: int = logging.INFO):
    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "cid": correlation_id,
        "data": data,
    }
    _events.log(level, json.dumps(record, default=str))
    return record

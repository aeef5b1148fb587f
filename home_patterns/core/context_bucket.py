"""Context bucket keys: the coarse situation label transitions are grouped by."""

from __future__ import annotations

import re

from home_patterns.models import ActionContext

DEFAULT_FORMAT = "{dayType}*{timeBucket}*{location}"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _field_values(context: ActionContext) -> dict[str, str]:
    return {
        "dayType": context.day_type or "",
        "timeBucket": context.time_bucket or "",
        "location": context.location or "",
        "peoplePresent": ",".join(sorted(context.present_people)),
    }


def build_context_key(context: ActionContext | None, template: str | None = None) -> str:
    """Render ``template`` with the context's fields. Missing fields render empty.

    >>> build_context_key(ActionContext(day_type="weekday", time_bucket="evening", location="living_room"))
    'weekday*evening*living_room'
    """
    values = _field_values(context or ActionContext())
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), ""), template or DEFAULT_FORMAT)

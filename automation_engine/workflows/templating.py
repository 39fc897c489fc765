"""Narrow placeholder interpolation for action configs.

Only ``{{user.<prop>}}`` and ``{{event.<prop>}}`` placeholders are recognised,
each resolved by literal lookup in an explicit variable map.  There is no
expression evaluation; placeholders without a value are left verbatim.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from automation_engine.workflows.models import EventContext, UserContext

_PLACEHOLDER = re.compile(r"\{\{(user|event)\.(\w+)\}\}")


def build_variables(
    context: EventContext,
    user: UserContext | None,
    *,
    include_timestamp: bool = False,
) -> dict[str, Any]:
    """Build the variable map for :func:`interpolate`.

    Keys are ``"user.<attr>"`` for every top-level user attribute (camelCase
    and snake_case) and ``"event.<key>"`` for every key of ``event_data``.

    Args:
        context: The firing's event context.
        user: The user the action runs for, if any.
        include_timestamp: Also expose ``event.timestamp`` as the ISO-8601
            event timestamp when ``event_data`` does not define one.

    Returns:
        Mapping of placeholder name to value.
    """
    variables: dict[str, Any] = {}
    if user is not None:
        for key, value in user.lookup_table().items():
            variables[f"user.{key}"] = value
    for key, value in context.event_data.items():
        variables[f"event.{key}"] = value
    if include_timestamp:
        variables.setdefault("event.timestamp", context.timestamp.isoformat())
    return variables


def interpolate(template: str, variables: Mapping[str, Any]) -> str:
    """Replace known placeholders in *template*.

    Args:
        template: Source string.
        variables: Output of :func:`build_variables` (or any equivalent map).

    Returns:
        The interpolated string.  ``None`` and empty values leave the
        placeholder untouched.
    """
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        value = variables.get(f"{match.group(1)}.{match.group(2)}")
        if value is None or value == "":
            return match.group(0)
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    return _PLACEHOLDER.sub(_replace, template)


def interpolate_values(
    data: Mapping[str, Any] | None, variables: Mapping[str, Any]
) -> dict[str, Any]:
    """Interpolate every string-valued entry of *data* (one level deep)."""
    if not data:
        return {}
    return {
        key: interpolate(value, variables) if isinstance(value, str) else value
        for key, value in data.items()
    }

"""
Audit trail reporting helpers: CSV export and summary statistics.
"""

import csv
import io
import json
from datetime import datetime
from typing import Iterable, Optional

from ...models.authorization_models import AuditLogEntry, AuditSummary

CSV_HEADER = ["Date", "Time", "Actor", "Action", "Resource Type", "Resource", "Permitted", "Details"]


def entry_to_row(entry: AuditLogEntry) -> list:
    return [
        entry.timestamp.strftime("%Y-%m-%d"),
        entry.timestamp.strftime("%H:%M:%S"),
        entry.actor_id,
        entry.action,
        entry.resource_type,
        entry.resource_id or "",
        "Yes" if entry.permitted else "No",
        json.dumps(entry.context, sort_keys=True, default=str),
    ]


def export_csv(entries: Iterable[AuditLogEntry]) -> str:
    """Render entries as CSV text with a header row"""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow(entry_to_row(entry))
    return output.getvalue()


def summarize(entries: Iterable[AuditLogEntry], now: Optional[datetime] = None) -> AuditSummary:
    """
    Aggregate statistics over a set of audit entries.

    denial_rate is the percentage of denied decisions, rounded to 2 places
    (0.0 when there are no entries).
    """
    now = now or datetime.utcnow()
    today = now.date()

    total = 0
    permitted = 0
    today_count = 0
    actors = set()
    by_action = {}
    by_resource_type = {}

    for entry in entries:
        total += 1
        if entry.permitted:
            permitted += 1
        if entry.timestamp.date() == today:
            today_count += 1
        actors.add(entry.actor_id)
        by_action[entry.action] = by_action.get(entry.action, 0) + 1
        by_resource_type[entry.resource_type] = by_resource_type.get(entry.resource_type, 0) + 1

    denied = total - permitted
    denial_rate = round(denied * 100.0 / total, 2) if total else 0.0

    return AuditSummary(
        total=total,
        permitted=permitted,
        denied=denied,
        unique_actors=len(actors),
        today_count=today_count,
        by_action=by_action,
        by_resource_type=by_resource_type,
        denial_rate=denial_rate,
    )

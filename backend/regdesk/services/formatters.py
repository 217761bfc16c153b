# /regdesk/services/formatters.py

import random
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from regdesk.config import strings

# Text produced from a session's collected fields: the confirmation summary
# and the operator notification. Both list every populated field.


def ordered_fields(collected_fields: Dict[str, str], field_labels: Dict[str, str]) -> List[Tuple[str, str]]:
    """
    Returns (label, value) pairs. Fields known to the branch come first in
    branch order; anything else that was collected follows in collection
    order under its raw name.
    """
    pairs = []
    for name, label in field_labels.items():
        if name in collected_fields:
            pairs.append((label, collected_fields[name]))
    for name, value in collected_fields.items():
        if name not in field_labels:
            pairs.append((name, value))
    return pairs


def format_summary(service_label: str, collected_fields: Dict[str, str], field_labels: Dict[str, str]) -> str:
    lines = [strings.CONFIRM_HEADER, "", f"🔹 Service: {service_label}"]
    lines += [f"🔹 {label}: {value}" for label, value in ordered_fields(collected_fields, field_labels)]
    lines += ["", strings.CONFIRM_FOOTER]
    return "\n".join(lines)


def format_admin_notification(
    sender_id: str,
    service_label: str,
    collected_fields: Dict[str, str],
    field_labels: Dict[str, str],
    reference_number: Optional[str] = None,
    submitted_at: Optional[datetime] = None,
) -> str:
    submitted_at = submitted_at or datetime.utcnow()
    lines = [
        strings.ADMIN_NOTIFICATION_HEADER,
        "",
        f"Client: {sender_id}",
        f"Service: {service_label}",
    ]
    if reference_number:
        lines.append(f"Reference: {reference_number}")
    lines += [f"{label}: {value}" for label, value in ordered_fields(collected_fields, field_labels)]
    lines += [
        f"Time: {submitted_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
        "",
        strings.ADMIN_NOTIFICATION_FOOTER,
    ]
    return "\n".join(lines)


def generate_reference_number(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """Local reference (QPS + 6 timestamp digits + 3 random digits) for records the downstream did not number."""
    now = now or datetime.utcnow()
    rng = rng or random
    millis = str(int(now.timestamp() * 1000))
    return f"QPS{millis[-6:]}{rng.randint(0, 999):03d}"

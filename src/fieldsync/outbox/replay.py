"""
Derived clocking state, rebuilt by replaying the outbox.

"Who is currently in?" is never stored. It is folded from the most recent
clock-batch events on every query, so it works offline and always agrees
with what was captured on this device.

Rules:
  - events are folded oldest → newest; per person only the latest clock
    type counts
  - a person is "in" unless that latest type is "out" (sick, leave,
    training, etc. all count as in)
  - with an org filter, batches for other orgs are skipped
  - malformed payloads and entries without a person id are skipped
"""
import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fieldsync.config import get_settings
from fieldsync.outbox.payloads import CLOCK_EVENT_TYPES, CLOCK_OUT


def extract_clock_batch(payload_json: Optional[str]) -> Tuple[Dict[str, Any], List[Any]]:
    """Return (batch header, people) from a stored payload; ({}, []) if unreadable.

    Legacy payloads were flat (no "batch" key) and used "selectedPeople" or
    "members" for the people list.
    """
    try:
        payload = json.loads(payload_json or "{}")
    except ValueError:
        return {}, []
    if not isinstance(payload, dict):
        return {}, []
    batch = payload.get("batch")
    if not isinstance(batch, dict):
        batch = payload
    people = payload.get("people") or payload.get("selectedPeople") or payload.get("members") or []
    return batch, people if isinstance(people, list) else []


def _person_id(person: Any) -> str:
    if not isinstance(person, dict):
        return ""
    return str(person.get("userId") or person.get("_id") or person.get("id") or "")


def fold_clock_states(rows: Iterable[Any], org_id: Optional[str] = None) -> Dict[str, str]:
    """Fold clock events (oldest first) into {person id: latest clock type}.

    Args:
        rows: objects with payload_json and org_id attributes (OfflineEvent rows).
        org_id: if given, only batches for this org are folded.
    """
    latest: Dict[str, str] = {}
    for row in rows:
        batch, people = extract_clock_batch(getattr(row, "payload_json", None))

        batch_org = batch.get("orgId") or getattr(row, "org_id", None)
        if org_id and batch_org and str(batch_org) != str(org_id):
            continue

        clock_type = str(batch.get("clockType") or "").strip().lower()
        if not clock_type:
            continue

        for person in people:
            uid = _person_id(person)
            if uid:
                latest[uid] = clock_type
    return latest


def latest_clock_types(
    queue,
    org_id: Optional[str] = None,
    window: Optional[int] = None,
) -> Dict[str, str]:
    """Latest clock type per person over the most recent `window` clock events."""
    if window is None:
        window = get_settings().replay_window
    rows = queue.recent_of_types(CLOCK_EVENT_TYPES, window)
    return fold_clock_states(rows, org_id=org_id)


def currently_in(
    queue,
    org_id: Optional[str] = None,
    window: Optional[int] = None,
) -> List[str]:
    """Sorted ids of everyone whose latest clock type is not "out"."""
    states = latest_clock_types(queue, org_id=org_id, window=window)
    return sorted(uid for uid, clock_type in states.items() if clock_type != CLOCK_OUT)

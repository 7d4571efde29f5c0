"""Seed demo telemetry through the ingest API."""

from __future__ import annotations

import os
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import anyio
import httpx

TOOLS = ("read_file", "search", "run_query", "deploy", "summarize")


@dataclass(frozen=True, slots=True)
class OrgSeed:
    """Demo org definition.

    Attributes
    ----------
    server_id : str
        Org identifier reported by its agents.
    company_name : str
        Display name carried in ``data.companyDetails``.
    users : tuple[str, ...]
        End-user ids active in the org.
    """

    server_id: str
    company_name: str
    users: tuple[str, ...]


ORGS: tuple[OrgSeed, ...] = (
    OrgSeed("srv-acme", "Acme Corp", ("u-ada", "u-bob", "u-cy")),
    OrgSeed("srv-globex", "Globex", ("u-dee", "u-eve")),
    OrgSeed("srv-initech", "Initech", ("u-fay",)),
)


def build_session(org: OrgSeed, started: datetime) -> list[dict[str, object]]:
    """Build one agent session's events.

    Parameters
    ----------
    org : OrgSeed
        Org the session belongs to.
    started : datetime
        Session start time.

    Returns
    -------
    list[dict[str, object]]
        Event submissions in chronological order.
    """
    session_id = f"sess-{uuid4().hex[:12]}"
    user_id = random.choice(org.users)
    base = {
        "server_id": org.server_id,
        "session_id": session_id,
        "user_id": user_id,
        "version": "1.4.2",
    }
    moment = started
    events = [
        {
            **base,
            "event": "session_start",
            "timestamp": moment.isoformat(),
            "data": {
                "userName": user_id.removeprefix("u-").title(),
                "companyDetails": {"Name": org.company_name},
            },
        }
    ]
    for _ in range(random.randint(1, 6)):
        moment += timedelta(seconds=random.randint(5, 120))
        events.append(
            {
                **base,
                "event": "tool_call",
                "timestamp": moment.isoformat(),
                "data": {"tool": random.choice(TOOLS), "duration_ms": random.randint(20, 4000)},
            }
        )
    if random.random() < 0.2:
        moment += timedelta(seconds=3)
        events.append(
            {
                **base,
                "event": "error",
                "timestamp": moment.isoformat(),
                "data": {"message": "upstream timeout"},
            }
        )
    if random.random() < 0.85:
        moment += timedelta(seconds=1)
        events.append({**base, "event": "session_end", "timestamp": moment.isoformat()})
    return events


async def main() -> None:
    """Submit a week of demo sessions.

    Returns
    -------
    None
        Posts events and prints a short summary.
    """
    base_url = os.environ.get("TELEMETRY_BASE_URL", "http://127.0.0.1:3100")
    sessions_per_day = int(os.environ.get("SEED_SESSIONS_PER_DAY", "20"))
    now = datetime.now(timezone.utc)
    submitted = 0
    async with httpx.AsyncClient(base_url=base_url, timeout=10.0) as client:
        for days_ago in range(7):
            day = now - timedelta(days=days_ago)
            for _ in range(sessions_per_day):
                started = day.replace(hour=random.randint(0, 23), minute=random.randint(0, 59))
                if started > now:
                    started = now - timedelta(minutes=5)
                for event in build_session(random.choice(ORGS), started):
                    event["event_id"] = str(uuid4())
                    response = await client.post("/api/events", json=event)
                    response.raise_for_status()
                    submitted += 1
    print(f"seeded {submitted} events")


if __name__ == "__main__":
    anyio.run(main)

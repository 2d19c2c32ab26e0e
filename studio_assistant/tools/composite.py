"""Analysis tools that combine one list call with per-client detail calls.

Per-client requests run concurrently in fixed batches of :data:`BATCH_SIZE`;
each batch is awaited before the next one starts so a large client list
never fans out into hundreds of simultaneous upstream requests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from pydantic import Field

from studio_assistant.services.mindbody_client import (
    MindbodyAPIError,
    MindbodyClient,
    build_query,
)
from studio_assistant.tools.registry import ToolDescriptor, ToolParams

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
VISITS_PAGE_SIZE = 200
UPCOMING_BOOKING_DAYS = 30

T = TypeVar("T")
R = TypeVar("R")


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def gather_in_batches(
    items: Sequence[T],
    func: Callable[[T], Awaitable[R]],
    batch_size: int = BATCH_SIZE,
) -> list[R]:
    """Apply *func* to every item, at most *batch_size* at a time, keeping order."""
    results: list[R] = []
    for start in range(0, len(items), batch_size):
        batch = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(func(item) for item in batch)))
    return results


def _parse_dt(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


# ── get_clients_with_visits ──────────────────────────────────────────


class ClientsWithVisitsParams(ToolParams):
    search_text: str | None = Field(None, description="Search by name, email, or phone")
    client_ids: list[str] | None = Field(None, description="Specific client IDs to retrieve")
    last_modified_date: str | None = Field(
        None, description="Only clients created/modified AFTER this date (ISO 8601)",
    )
    visit_start_date: str | None = Field(None, description="Only count visits AFTER this date")
    visit_end_date: str | None = Field(None, description="Only count visits BEFORE this date")
    min_visits: int | None = Field(
        None, description="Keep clients with at least this many visits (2 = 'came back')",
    )
    max_visits: int | None = Field(None, description="Keep clients with at most this many visits")
    include_inactive: bool = Field(False, description="Include inactive clients (default: false)")
    limit: int = Field(100, description="Max number of clients to process (default: 100)")


async def clients_with_visits(client: MindbodyClient, params: ClientsWithVisitsParams) -> dict[str, Any]:
    listing = await client.fetch(
        "/client/clients" + build_query({
            "searchText": params.search_text,
            "clientIds": params.client_ids,
            "lastModifiedDate": params.last_modified_date,
            "includeInactive": params.include_inactive,
            "limit": params.limit,
            "offset": 0,
        }),
        tool_name="get_clients_with_visits",
    )
    clients = listing.get("Clients") or []
    if not clients:
        return {
            "success": True,
            "totalClientsFound": 0,
            "clientsMatchingCriteria": 0,
            "summary": "No clients found matching the criteria.",
            "clients": [],
        }

    async def with_visits(record: dict[str, Any]) -> dict[str, Any]:
        client_id = record.get("Id")
        base = {
            "clientId": client_id,
            "firstName": record.get("FirstName"),
            "lastName": record.get("LastName"),
        }
        try:
            response = await client.fetch(
                "/client/clientvisits" + build_query({
                    "clientId": client_id,
                    "startDate": params.visit_start_date,
                    "endDate": params.visit_end_date,
                    "limit": VISITS_PAGE_SIZE,
                    "offset": 0,
                }),
                tool_name="get_clients_with_visits",
            )
        except MindbodyAPIError as exc:
            logger.warning("Failed to get visits for client %s: %s", client_id, exc)
            return {**base, "visitCount": 0, "visits": [], "error": "Failed to fetch visits"}

        visits = response.get("Visits") or []
        return {
            **base,
            "visitCount": len(visits),
            "visits": visits[:10],
            "firstVisitDate": visits[-1].get("StartDateTime") if visits else None,
            "lastVisitDate": visits[0].get("StartDateTime") if visits else None,
        }

    everyone = await gather_in_batches(clients, with_visits)

    matching = everyone
    if params.min_visits is not None:
        matching = [c for c in matching if c["visitCount"] >= params.min_visits]
    if params.max_visits is not None:
        matching = [c for c in matching if c["visitCount"] <= params.max_visits]

    total_visits = sum(c["visitCount"] for c in everyone)
    stats = {
        "totalClientsFound": len(clients),
        "clientsMatchingCriteria": len(matching),
        "clientsWithZeroVisits": sum(1 for c in everyone if c["visitCount"] == 0),
        "clientsWithOneVisit": sum(1 for c in everyone if c["visitCount"] == 1),
        "clientsWithMultipleVisits": sum(1 for c in everyone if c["visitCount"] >= 2),
        "averageVisitsPerClient": round(total_visits / len(everyone), 2),
        "totalVisitsAllClients": total_visits,
    }

    if params.min_visits == 2:
        share = stats["clientsWithMultipleVisits"] / stats["totalClientsFound"] * 100
        summary = (
            f"{stats['clientsWithMultipleVisits']} out of {stats['totalClientsFound']} "
            f"clients ({share:.1f}%) returned for a second visit."
        )
    else:
        summary = (
            f"Found {stats['clientsMatchingCriteria']} clients matching criteria "
            f"out of {stats['totalClientsFound']} total."
        )

    return {"success": True, **stats, "summary": summary, "clients": matching}


# ── get_non_member_trial_clients ─────────────────────────────────────


class NonMemberTrialParams(ToolParams):
    recent_window_days: int = Field(14, description="Look for visits within this many days (default: 14)")
    min_days_since_visit: int = Field(
        3, description="Minimum days since last visit to count as 'hasn't come back' (default: 3)",
    )
    include_upcoming_bookings: bool = Field(
        True, description="If true, exclude clients with a booking in the next 30 days (default: true)",
    )
    limit: int = Field(100, description="Max clients to analyze (default: 100)")


_POTENTIAL_ORDER = {"high": 0, "medium": 1, "low": 2}


def _classify(
    *, is_new: bool, total_visits: int, days_since: int, services_used: int, min_days: int,
) -> tuple[str, str]:
    if is_new and 3 <= days_since <= 7:
        potential, action = "high", (
            f"Hot lead! New client visited {days_since} days ago. "
            "Call/text with intro membership offer."
        )
    elif is_new and days_since > 7:
        potential, action = "medium", (
            f"Follow up needed. New client hasn't returned in {days_since} days. "
            "Send 'How was your experience?' message with return incentive."
        )
    elif total_visits > 2 and days_since >= min_days:
        potential, action = "medium", (
            f"Repeat visitor ({total_visits} visits) not yet a member. Present "
            "membership value proposition showing per-visit savings."
        )
    else:
        potential, action = "low", (
            f"Add to nurture sequence. {days_since} days since last visit."
        )

    if services_used >= 2 and potential != "high":
        potential, action = "high", (
            f"Engaged client! Tried {services_used} different services. Perfect "
            "candidate for unlimited membership pitch."
        )
    return potential, action


async def non_member_trial_clients(
    client: MindbodyClient,
    params: NonMemberTrialParams,
    now: datetime,
) -> dict[str, Any]:
    tool_name = "get_non_member_trial_clients"
    window_start = now - timedelta(days=params.recent_window_days)
    cutoff = now - timedelta(days=params.min_days_since_visit)

    listing = await client.fetch(
        "/client/clients" + build_query({
            "lastModifiedDate": _iso(window_start),
            "includeInactive": False,
            "limit": params.limit,
            "offset": 0,
        }),
        tool_name=tool_name,
    )
    clients = listing.get("Clients") or []
    if not clients:
        return {
            "success": True,
            "totalAnalyzed": 0,
            "nonMemberTrials": [],
            "summary": "No recent clients found to analyze.",
        }

    async def analyze(record: dict[str, Any]) -> dict[str, Any] | None:
        client_id = record.get("Id")
        try:
            memberships = await client.fetch(
                "/client/activeclientmemberships"
                + build_query({"clientId": client_id, "limit": 10, "offset": 0}),
                tool_name=tool_name,
            )
            if memberships.get("ClientMemberships"):
                return None

            recent = await client.fetch(
                "/client/clientvisits" + build_query({
                    "clientId": client_id,
                    "startDate": _iso(window_start),
                    "limit": 50,
                    "offset": 0,
                }),
                tool_name=tool_name,
            )
            dated = [
                (when, visit)
                for visit in recent.get("Visits") or []
                if (when := _parse_dt(visit.get("StartDateTime"))) is not None
            ]
            if not dated:
                return None
            dated.sort(key=lambda pair: pair[0], reverse=True)
            last_visit_at, last_visit = dated[0]
            if last_visit_at > cutoff:
                return None

            if params.include_upcoming_bookings:
                schedule = await client.fetch(
                    "/client/clientschedule" + build_query({
                        "clientId": client_id,
                        "startDate": _iso(now),
                        "endDate": _iso(now + timedelta(days=UPCOMING_BOOKING_DAYS)),
                        "limit": 10,
                        "offset": 0,
                    }),
                    tool_name=tool_name,
                )
                if (schedule.get("Appointments") or []) + (schedule.get("Classes") or []):
                    return None

            history = await client.fetch(
                "/client/clientvisits"
                + build_query({"clientId": client_id, "limit": 100, "offset": 0}),
                tool_name=tool_name,
            )
        except MindbodyAPIError as exc:
            logger.warning("Failed to analyze client %s: %s", client_id, exc)
            return None

        total_visits = len(history.get("Visits") or [])
        is_new = total_visits <= 2
        days_since = (now - last_visit_at).days
        services_used = [
            {
                "name": visit.get("Name") or visit.get("ServiceName") or "Unknown Service",
                "date": visit.get("StartDateTime"),
            }
            for _, visit in dated[:5]
        ]
        potential, action = _classify(
            is_new=is_new,
            total_visits=total_visits,
            days_since=days_since,
            services_used=len(services_used),
            min_days=params.min_days_since_visit,
        )
        return {
            "clientId": client_id,
            "firstName": record.get("FirstName") or "",
            "lastName": record.get("LastName") or "",
            "email": record.get("Email") or "",
            "phone": record.get("MobilePhone") or record.get("HomePhone") or "",
            "createdDate": record.get("CreationDate"),
            "visitDate": last_visit.get("StartDateTime"),
            "daysSinceVisit": days_since,
            "servicesUsed": services_used,
            "hasUpcomingBooking": False,
            "visitCount": total_visits,
            "isNewClient": is_new,
            "recommendedAction": action,
            "conversionPotential": potential,
        }

    trials = [t for t in await gather_in_batches(clients, analyze) if t is not None]
    trials.sort(key=lambda t: (_POTENTIAL_ORDER[t["conversionPotential"]], t["daysSinceVisit"]))

    def count(potential: str) -> int:
        return sum(1 for t in trials if t["conversionPotential"] == potential)

    new_clients = sum(1 for t in trials if t["isNewClient"])
    stats = {
        "totalAnalyzed": len(clients),
        "totalNonMemberTrials": len(trials),
        "highPotential": count("high"),
        "mediumPotential": count("medium"),
        "lowPotential": count("low"),
        "newClients": new_clients,
        "repeatVisitors": len(trials) - new_clients,
        "avgDaysSinceVisit": (
            round(sum(t["daysSinceVisit"] for t in trials) / len(trials), 1) if trials else 0
        ),
    }
    summary = (
        f"Found {stats['totalNonMemberTrials']} non-member clients who visited in the last "
        f"{params.recent_window_days} days but haven't returned: {stats['highPotential']} high "
        f"potential, {stats['mediumPotential']} medium, {stats['lowPotential']} low. "
        f"{stats['newClients']} are first-time/new clients, {stats['repeatVisitors']} are "
        "repeat visitors without memberships."
    )
    return {"success": True, **stats, "summary": summary, "nonMemberTrials": trials}


# ── Registration ─────────────────────────────────────────────────────


def build_composite_tools(
    client: MindbodyClient,
    *,
    now: Callable[[], datetime] = _utcnow,
) -> list[ToolDescriptor]:
    async def run_clients_with_visits(params: ClientsWithVisitsParams) -> dict[str, Any]:
        return await clients_with_visits(client, params)

    async def run_non_member_trials(params: NonMemberTrialParams) -> dict[str, Any]:
        return await non_member_trial_clients(client, params, now())

    return [
        ToolDescriptor.from_handler(
            "get_clients_with_visits",
            "📊 AGGREGATE TOOL - Get clients AND their visit counts in one call. Use for "
            "'how many new clients came back for a second visit', 'which clients visited "
            "more than once', retention and repeat-visit questions. Fetches visits for "
            "every matching client, no need to loop.",
            ClientsWithVisitsParams,
            run_clients_with_visits,
        ),
        ToolDescriptor.from_handler(
            "get_non_member_trial_clients",
            "🎯 CONVERSION OPPORTUNITY TOOL - Find non-member clients who visited recently "
            "but haven't returned, ranked by conversion potential with a recommended "
            "follow-up action.",
            NonMemberTrialParams,
            run_non_member_trials,
        ),
    ]

"""Tests for the multi-call analysis tools."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from studio_assistant.config import MindbodyCredentials
from studio_assistant.services.cache import ResponseCache
from studio_assistant.services.mindbody_client import MindbodySession
from studio_assistant.tools.composite import (
    BATCH_SIZE,
    ClientsWithVisitsParams,
    NonMemberTrialParams,
    clients_with_visits,
    gather_in_batches,
    non_member_trial_clients,
)

BASE = "https://mb.test/public/v6"
NOW = datetime(2026, 3, 20, 12, 0, tzinfo=UTC)


def _client(mock_http, handler):
    session = MindbodySession(http=mock_http(handler), cache=ResponseCache(), base_url=BASE)
    return session.client(MindbodyCredentials(api_key="k", static_token="tok")), session


def _clients(n):
    return [{"Id": str(i), "FirstName": f"First{i}", "LastName": f"Last{i}"} for i in range(1, n + 1)]


def _at(days_ago: float) -> str:
    return (NOW - timedelta(days=days_ago)).strftime("%Y-%m-%dT%H:%M:%S")


# ── gather_in_batches ────────────────────────────────────────────────


class TestGatherInBatches:
    @pytest.mark.asyncio
    async def test_never_more_than_batch_size_in_flight(self):
        in_flight = 0
        peak = 0

        async def work(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return item * 2

        results = await gather_in_batches(list(range(35)), work)

        assert results == [i * 2 for i in range(35)]
        assert peak == BATCH_SIZE

    @pytest.mark.asyncio
    async def test_empty_input(self):
        async def work(item):
            raise AssertionError("not called")

        assert await gather_in_batches([], work) == []


# ── get_clients_with_visits ──────────────────────────────────────────


class TestClientsWithVisits:
    @staticmethod
    def _handler(visit_counts: dict[str, int], failing: frozenset[str] = frozenset()):
        def handler(request: httpx.Request):
            if request.url.path.endswith("/client/clients"):
                return httpx.Response(200, json={"Clients": _clients(len(visit_counts))})
            client_id = request.url.params["clientId"]
            if client_id in failing:
                return httpx.Response(500, text="boom")
            visits = [{"StartDateTime": _at(d)} for d in range(visit_counts[client_id])]
            return httpx.Response(200, json={"Visits": visits})

        return handler

    @pytest.mark.asyncio
    async def test_filters_after_all_fetches(self, mock_http):
        counts = {"1": 0, "2": 1, "3": 2, "4": 5}
        client, session = _client(mock_http, self._handler(counts))

        result = await clients_with_visits(client, ClientsWithVisitsParams(min_visits=2))

        assert result["totalClientsFound"] == 4
        assert result["clientsMatchingCriteria"] == 2
        assert [c["clientId"] for c in result["clients"]] == ["3", "4"]
        assert result["clientsWithZeroVisits"] == 1
        assert result["clientsWithOneVisit"] == 1
        assert result["clientsWithMultipleVisits"] == 2
        assert result["totalVisitsAllClients"] == 8
        assert result["averageVisitsPerClient"] == 2.0
        assert "2 out of 4 clients (50.0%) returned for a second visit" in result["summary"]
        # one list call + one visits call per client
        assert len(session.http.requests) == 5

    @pytest.mark.asyncio
    async def test_max_visits_filter(self, mock_http):
        client, _ = _client(mock_http, self._handler({"1": 0, "2": 1, "3": 3}))
        result = await clients_with_visits(client, ClientsWithVisitsParams(max_visits=1))
        assert [c["clientId"] for c in result["clients"]] == ["1", "2"]
        assert result["summary"] == "Found 2 clients matching criteria out of 3 total."

    @pytest.mark.asyncio
    async def test_failed_client_fetch_is_recorded_not_raised(self, mock_http):
        client, _ = _client(mock_http, self._handler({"1": 2, "2": 3}, failing=frozenset({"2"})))

        result = await clients_with_visits(client, ClientsWithVisitsParams())

        failed = next(c for c in result["clients"] if c["clientId"] == "2")
        assert failed["visitCount"] == 0
        assert failed["error"] == "Failed to fetch visits"
        assert result["totalVisitsAllClients"] == 2

    @pytest.mark.asyncio
    async def test_visit_requests_use_window_and_page_size(self, mock_http):
        client, session = _client(mock_http, self._handler({"1": 1}))
        await clients_with_visits(
            client, ClientsWithVisitsParams(visit_start_date="2026-01-01", search_text="Jane"),
        )
        list_call, visit_call = session.http.requests
        assert list_call.url.params["searchText"] == "Jane"
        assert visit_call.url.params["startDate"] == "2026-01-01"
        assert visit_call.url.params["limit"] == "200"

    @pytest.mark.asyncio
    async def test_no_clients(self, mock_http):
        client, _ = _client(mock_http, lambda r: httpx.Response(200, json={"Clients": []}))
        result = await clients_with_visits(client, ClientsWithVisitsParams())
        assert result["totalClientsFound"] == 0
        assert result["clients"] == []


# ── get_non_member_trial_clients ─────────────────────────────────────


class TestNonMemberTrialClients:
    @staticmethod
    def _handler(profiles: dict[str, dict]):
        """profiles: id → {member, recent (days ago list), upcoming, total}"""

        def handler(request: httpx.Request):
            path = request.url.path
            params = request.url.params
            if path.endswith("/client/clients"):
                return httpx.Response(200, json={"Clients": _clients(len(profiles))})
            profile = profiles[params["clientId"]]
            if path.endswith("/activeclientmemberships"):
                return httpx.Response(
                    200, json={"ClientMemberships": [{"Id": 1}] if profile.get("member") else []},
                )
            if path.endswith("/clientschedule"):
                classes = [{"Id": 9}] if profile.get("upcoming") else []
                return httpx.Response(200, json={"Appointments": [], "Classes": classes})
            if path.endswith("/clientvisits"):
                if "startDate" in params:
                    visits = [
                        {"StartDateTime": _at(d), "Name": f"Class {i}"}
                        for i, d in enumerate(profile.get("recent", []))
                    ]
                else:
                    visits = [{"StartDateTime": _at(30)}] * profile.get("total", 1)
                return httpx.Response(200, json={"Visits": visits})
            return httpx.Response(404)

        return handler

    @pytest.mark.asyncio
    async def test_classifies_and_sorts_candidates(self, mock_http):
        profiles = {
            "1": {"member": True, "recent": [5]},            # member → skipped
            "2": {"recent": [1]},                            # visited too recently → skipped
            "3": {"recent": [5], "total": 1},                # new, 5 days → high
            "4": {"recent": [10], "total": 2},               # new, 10 days → medium
            "5": {"recent": [4], "upcoming": True},          # booked → skipped
            "6": {"recent": [], "total": 0},                 # no visits → skipped
            "7": {"recent": [12], "total": 6},               # repeat visitor → medium
        }
        client, _ = _client(mock_http, self._handler(profiles))

        result = await non_member_trial_clients(client, NonMemberTrialParams(), NOW)

        ids = [t["clientId"] for t in result["nonMemberTrials"]]
        assert ids == ["3", "4", "7"]
        assert [t["conversionPotential"] for t in result["nonMemberTrials"]] == [
            "high", "medium", "medium",
        ]
        assert result["totalAnalyzed"] == 7
        assert result["highPotential"] == 1
        assert result["mediumPotential"] == 2
        assert result["newClients"] == 2
        assert result["repeatVisitors"] == 1
        assert result["nonMemberTrials"][0]["daysSinceVisit"] == 5

    @pytest.mark.asyncio
    async def test_multiple_services_upgrade_to_high(self, mock_http):
        client, _ = _client(mock_http, self._handler({"1": {"recent": [20, 25], "total": 2}}))

        result = await non_member_trial_clients(client, NonMemberTrialParams(), NOW)

        trial = result["nonMemberTrials"][0]
        assert trial["conversionPotential"] == "high"
        assert trial["daysSinceVisit"] == 20
        assert len(trial["servicesUsed"]) == 2

    @pytest.mark.asyncio
    async def test_upcoming_bookings_ignored_when_disabled(self, mock_http):
        client, session = _client(
            mock_http, self._handler({"1": {"recent": [5], "upcoming": True}}),
        )
        result = await non_member_trial_clients(
            client, NonMemberTrialParams(include_upcoming_bookings=False), NOW,
        )
        assert [t["clientId"] for t in result["nonMemberTrials"]] == ["1"]
        assert not any(r.url.path.endswith("/clientschedule") for r in session.http.requests)

    @pytest.mark.asyncio
    async def test_failed_client_is_skipped(self, mock_http):
        def handler(request):
            if request.url.path.endswith("/client/clients"):
                return httpx.Response(200, json={"Clients": _clients(1)})
            return httpx.Response(500, text="boom")

        client, _ = _client(mock_http, handler)
        result = await non_member_trial_clients(client, NonMemberTrialParams(), NOW)
        assert result["nonMemberTrials"] == []
        assert result["avgDaysSinceVisit"] == 0

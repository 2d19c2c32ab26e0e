"""Mindbody tool catalog.

Almost every Mindbody read is the same shape: a GET on one endpoint with
the tool's arguments rendered as the query string.  Those tools are declared
as rows of :data:`ENDPOINTS` (name, path, arguments model, description) and
share one executor.  Writes and the multi-call analysis tools get their own
handlers.

Each argument model is the single source of truth for what the model may
send: its JSON schema is what gets bound to the LLM, and its ``required``
list is what the validator enforces.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import Field

from studio_assistant.services.mindbody_client import MindbodyClient, build_query
from studio_assistant.tools.composite import build_composite_tools
from studio_assistant.tools.registry import ToolDescriptor, ToolParams, ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100

_NEEDS_CLIENT = (
    "⚠️ REQUIRES clientId - call get_clients first (searchText = the client's "
    "name, email or phone) and use the Id from the result."
)


# ── Shared argument blocks ───────────────────────────────────────────


class Paging(ToolParams):
    limit: int = Field(DEFAULT_PAGE_SIZE, description="Maximum number of results (default: 100)")
    offset: int = Field(0, description="Pagination offset (default: 0)")


class DateRange(ToolParams):
    start_date: str | None = Field(None, description="Start date (ISO 8601)")
    end_date: str | None = Field(None, description="End date (ISO 8601)")


# ── Client ───────────────────────────────────────────────────────────


class GetClientsParams(Paging):
    search_text: str | None = Field(None, description="Search by name, email, or phone")
    client_ids: list[str] | None = Field(None, description="Specific client IDs to retrieve")
    include_inactive: bool = Field(False, description="Include inactive clients (default: false)")
    last_modified_date: str | None = Field(
        None,
        description=(
            "Only clients created or modified AFTER this date (ISO 8601). "
            "Use it for 'new' or 'recent' clients."
        ),
    )


class ClientCompleteInfoParams(DateRange):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")


class ClientServicesParams(Paging):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")
    class_id: int | None = Field(None, description="Filter by specific class ID")
    show_active_only: bool | None = Field(None, description="Only services that are still usable")


class ActiveClientMembershipsParams(Paging):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")
    location_id: int | None = Field(None, description="Filter by location ID")


class ActiveClientsMembershipsParams(Paging):
    client_ids: list[str] = Field(..., description="Array of client IDs - REQUIRED")
    location_id: int | None = Field(None, description="Filter by location ID")


class ClientPurchasesParams(Paging, DateRange):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")
    sale_id: int | None = Field(None, description="Filter by specific sale ID")


class ClientScheduleParams(Paging, DateRange):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")


class ClientVisitsParams(Paging, DateRange):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")
    unpaids_only: bool | None = Field(None, description="Only unpaid visits (default: false)")


class ContactLogsParams(Paging, DateRange):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")
    staff_ids: list[int] | None = Field(None, description="Filter by staff IDs")
    type_ids: list[int] | None = Field(None, description="Filter by contact type IDs")
    subtype_ids: list[int] | None = Field(None, description="Filter by contact subtype IDs")


# ── Class ────────────────────────────────────────────────────────────


class ClassesParams(Paging):
    start_date_time: str | None = Field(None, description="Classes starting after (ISO 8601)")
    end_date_time: str | None = Field(None, description="Classes starting before (ISO 8601)")
    class_ids: list[int] | None = Field(None, description="Specific class IDs")
    class_description_ids: list[int] | None = Field(None, description="Filter by class description")
    staff_ids: list[int] | None = Field(None, description="Filter by instructor (staff IDs)")
    location_ids: list[int] | None = Field(None, description="Filter by location IDs")


class ClassVisitsParams(ToolParams):
    class_id: int = Field(..., description="The class's unique ID - REQUIRED")


class WaitlistEntriesParams(Paging):
    class_ids: list[int] | None = Field(None, description="Filter by class IDs")
    class_schedule_ids: list[int] | None = Field(None, description="Filter by class schedule IDs")
    client_ids: list[str] | None = Field(None, description="Filter by client IDs")
    hide_past_entries: bool | None = Field(None, description="Hide entries for past classes")


class AddClientToClassParams(ToolParams):
    client_id: str = Field(..., description="The client's unique ID - REQUIRED")
    class_id: int = Field(..., description="The class's unique ID - REQUIRED")
    test: bool = Field(False, description="Validate the booking without saving it")
    send_email: bool = Field(False, description="Send the client a confirmation email")


# ── Staff, site & appointments ───────────────────────────────────────


class StaffParams(Paging):
    staff_ids: list[int] | None = Field(None, description="Specific staff IDs")
    location_id: int | None = Field(None, description="Filter by location ID")
    session_type_id: int | None = Field(None, description="Staff who can teach this session type")


class LocationsParams(Paging):
    pass


class ScheduleItemsParams(Paging, DateRange):
    staff_ids: list[int] | None = Field(None, description="Filter by staff IDs")
    session_type_ids: list[int] | None = Field(None, description="Filter by session type IDs")
    location_ids: list[int] | None = Field(None, description="Filter by location IDs")
    ignore_prep_finish_times: bool | None = Field(
        None, description="Ignore prep and finish times (default: false)",
    )


class ActiveSessionTimesParams(Paging, DateRange):
    schedule_id: int | None = Field(None, description="Filter by schedule ID")
    session_type_ids: list[int] | None = Field(None, description="Filter by session type IDs")


class MembershipsParams(Paging):
    membership_ids: list[int] | None = Field(None, description="Specific membership IDs")


class SessionTypesParams(Paging):
    program_ids: list[int] | None = Field(None, description="Filter by program IDs")
    online_only: bool | None = Field(None, description="Only session types bookable online")


# ── Sale ─────────────────────────────────────────────────────────────


class SalesParams(Paging):
    sale_id: int | None = Field(None, description="Filter by specific sale ID")
    start_sale_date_time: str | None = Field(None, description="Sales after (ISO 8601)")
    end_sale_date_time: str | None = Field(None, description="Sales before (ISO 8601)")
    payment_method_id: int | None = Field(None, description="Filter by payment method")


class TransactionsParams(Paging):
    client_id: str | None = Field(None, description="Filter by client ID")
    sale_id: int | None = Field(None, description="Filter by sale ID")
    transaction_id: int | None = Field(None, description="Filter by transaction ID")
    location_id: int | None = Field(None, description="Filter by location ID")
    transaction_start_date_time: str | None = Field(None, description="Transactions after (ISO 8601)")
    transaction_end_date_time: str | None = Field(None, description="Transactions before (ISO 8601)")


class ServicesParams(Paging):
    service_ids: list[str] | None = Field(None, description="Specific service IDs")
    program_ids: list[int] | None = Field(None, description="Filter by program IDs")
    session_type_ids: list[int] | None = Field(None, description="Filter by session type IDs")
    location_id: int | None = Field(None, description="Filter by location ID")
    sell_online: bool | None = Field(None, description="Only services sold online")


class ProductsParams(Paging):
    product_ids: list[str] | None = Field(None, description="Specific product IDs")
    search_text: str | None = Field(None, description="Search products by text")
    category_ids: list[int] | None = Field(None, description="Filter by category IDs")
    sub_category_ids: list[int] | None = Field(None, description="Filter by subcategory IDs")
    location_id: int | None = Field(None, description="Filter by location ID")
    sell_online: bool | None = Field(None, description="Only products sold online")


class PackagesParams(Paging):
    package_ids: list[int] | None = Field(None, description="Specific package IDs")
    location_id: int | None = Field(None, description="Filter by location ID")
    sell_online: bool | None = Field(None, description="Only packages sold online")


# ── Endpoint table ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Endpoint:
    name: str
    path: str
    parameters: type[ToolParams]
    description: str


ENDPOINTS: tuple[Endpoint, ...] = (
    Endpoint(
        "get_clients", "/client/clients", GetClientsParams,
        "⭐ PRIMARY TOOL - Get a list of clients and their IDs. Call this FIRST before "
        "any client-specific tool. Use searchText to find clients by name, email, or "
        "phone. For 'new' or 'recent' clients pass lastModifiedDate.",
    ),
    Endpoint(
        "get_client_complete_info", "/client/clientcompleteinfo", ClientCompleteInfoParams,
        f"Get a client's profile, services, memberships and arrivals in one call. {_NEEDS_CLIENT}",
    ),
    Endpoint(
        "get_client_services", "/client/clientservices", ClientServicesParams,
        f"Get the pricing options (class cards, packages) a client owns. {_NEEDS_CLIENT}",
    ),
    Endpoint(
        "get_active_client_memberships", "/client/activeclientmemberships",
        ActiveClientMembershipsParams,
        f"Get a client's active memberships. {_NEEDS_CLIENT}",
    ),
    Endpoint(
        "get_active_clients_memberships", "/client/activeclientsmemberships",
        ActiveClientsMembershipsParams,
        "Get active memberships for several clients at once. ⚠️ REQUIRES a non-empty "
        "clientIds array - call get_clients first to obtain the IDs.",
    ),
    Endpoint(
        "get_client_purchases", "/client/clientpurchases", ClientPurchasesParams,
        f"Get a client's purchase history. {_NEEDS_CLIENT}",
    ),
    Endpoint(
        "get_client_schedule", "/client/clientschedule", ClientScheduleParams,
        f"Get a client's booked classes and appointments. {_NEEDS_CLIENT}",
    ),
    Endpoint(
        "get_client_visits", "/client/clientvisits", ClientVisitsParams,
        f"Get visit history for a specific client. {_NEEDS_CLIENT}",
    ),
    Endpoint(
        "get_contact_logs", "/client/contactlogs", ContactLogsParams,
        f"Get contact logs (calls, emails, notes) for a client. {_NEEDS_CLIENT}",
    ),
    Endpoint(
        "get_classes", "/class/classes", ClassesParams,
        "Get scheduled classes with instructor, capacity and bookings. Use this to find "
        "a classId.",
    ),
    Endpoint(
        "get_class_visits", "/class/classvisits", ClassVisitsParams,
        "Get the attendance list of one class. ⚠️ REQUIRES classId - call get_classes "
        "first.",
    ),
    Endpoint(
        "get_waitlist_entries", "/class/waitlistentries", WaitlistEntriesParams,
        "Get class waitlist entries.",
    ),
    Endpoint(
        "get_staff", "/staff/staff", StaffParams,
        "Get staff members (instructors, front desk) and their details.",
    ),
    Endpoint(
        "get_locations", "/site/locations", LocationsParams,
        "Get the studio's locations.",
    ),
    Endpoint(
        "get_schedule_items", "/appointment/scheduleitems", ScheduleItemsParams,
        "Get appointment schedule items. Use to see appointment availability.",
    ),
    Endpoint(
        "get_active_session_times", "/appointment/activesessiontimes",
        ActiveSessionTimesParams,
        "Get active session times for appointments.",
    ),
    Endpoint(
        "get_sales", "/sale/sales", SalesParams,
        "Get sales history. Use to see what was sold and when.",
    ),
    Endpoint(
        "get_transactions", "/sale/transactions", TransactionsParams,
        "Get payment transactions.",
    ),
    Endpoint(
        "get_services", "/sale/services", ServicesParams,
        "Get the pricing options (services) offered for sale.",
    ),
    Endpoint(
        "get_products", "/sale/products", ProductsParams,
        "Get retail products.",
    ),
    Endpoint(
        "get_packages", "/sale/packages", PackagesParams,
        "Get packages offered for sale.",
    ),
    Endpoint(
        "get_memberships", "/site/memberships", MembershipsParams,
        "Get the membership types the studio offers.",
    ),
    Endpoint(
        "get_session_types", "/site/sessiontypes", SessionTypesParams,
        "Get session types (class and appointment categories).",
    ),
)


# ── Executors ────────────────────────────────────────────────────────


def _endpoint_tool(client: MindbodyClient, endpoint: Endpoint) -> ToolDescriptor:
    async def handler(params: ToolParams) -> Any:
        query = params.model_dump(by_alias=True, exclude_none=True)
        return await client.fetch(
            f"{endpoint.path}{build_query(query)}", tool_name=endpoint.name,
        )

    return ToolDescriptor.from_handler(
        endpoint.name, endpoint.description, endpoint.parameters, handler,
    )


def _add_client_to_class_tool(client: MindbodyClient) -> ToolDescriptor:
    async def handler(params: AddClientToClassParams) -> Any:
        return await client.fetch(
            "/class/addclienttoclass",
            method="POST",
            body={
                "ClientId": params.client_id,
                "ClassId": params.class_id,
                "Test": params.test,
                "SendEmail": params.send_email,
            },
            tool_name="add_client_to_class",
        )

    return ToolDescriptor.from_handler(
        "add_client_to_class",
        "Book a client into a class. ⚠️ REQUIRES clientId and classId - look them up "
        "with get_clients and get_classes first. Confirm with the user before booking.",
        AddClientToClassParams,
        handler,
    )


def build_mindbody_tools(client: MindbodyClient) -> ToolRegistry:
    """Build the full tool catalog bound to *client*."""
    registry = ToolRegistry(_endpoint_tool(client, endpoint) for endpoint in ENDPOINTS)
    registry.register(_add_client_to_class_tool(client))
    for descriptor in build_composite_tools(client):
        registry.register(descriptor)
    logger.debug("Built %d Mindbody tools", len(registry))
    return registry

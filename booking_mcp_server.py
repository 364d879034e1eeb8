from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from equipment_booking import AvailabilityProjector, ConflictResolver, EquipmentInventory, YamlDocumentStore
from equipment_booking.models import EQUIPMENT_CATEGORIES, ReservationRecord

mcp = FastMCP(
    "Equipment Booking MCP Server",
    instructions="Expose equipment inventory, availability checks and calendars from the equipment_booking project.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
STORE = YamlDocumentStore(DATA_DIR)
INVENTORY = EquipmentInventory(STORE)
RESOLVER = ConflictResolver(STORE, INVENTORY)
PROJECTOR = AvailabilityProjector(INVENTORY, RESOLVER)


@mcp.resource("booking://categories")
async def list_categories() -> list[str]:
    """List equipment categories."""
    return list(EQUIPMENT_CATEGORIES)


@mcp.tool()
def list_equipment(category: str | None = None, available_only: bool = False) -> list[dict]:
    """Return equipment records, optionally filtered by category or current availability."""
    records = INVENTORY.list_equipment(category=category, available_only=available_only)
    return [record.to_dict() for record in records]


@mcp.tool()
def check_availability(equipment_id: str, start_iso: str, end_iso: str, quantity: int = 1) -> dict:
    """Check whether a quantity of equipment is free over an ISO date range."""
    result = RESOLVER.check_availability(
        equipment_id,
        datetime.fromisoformat(start_iso),
        datetime.fromisoformat(end_iso),
        quantity,
    )
    return result.to_dict()


@mcp.tool()
def equipment_calendar(equipment_id: str, from_date: str | None = None, days: int = 30) -> list[dict]:
    """Return per-day availability for an equipment starting at from_date (defaults to today)."""
    start = date.fromisoformat(from_date) if from_date else date.today()
    return PROJECTOR.project(equipment_id, start, days).to_list()


@mcp.tool()
def list_reservations(equipment_id: str) -> list[dict]:
    """Return every reservation recorded for an equipment, with overdue projection applied."""
    now = datetime.now()
    rows = STORE.find("reservations", lambda row: row.get("equipment_id") == equipment_id)
    return [ReservationRecord.from_dict(row).to_dict(now) for row in rows]


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()

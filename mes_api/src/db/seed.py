"""
Database seeding utilities for minimal plant reference data.

Seeds:
- Base tenant (DEFAULT_TENANT_SLUG)
- Permission codes and the operator roles (admin, supervisor, operator,
  technician, material_handler, quality) with their grants
- Work centers with equipment, parts, stock locations and opening inventory
- Downtime reason codes
- A defect code and an in-process inspection plan with two characteristics

Usage:
  python -m src.db.run_migrations upgrade head
  python -m src.db.seed
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Tuple
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.settings import get_app_settings
from src.db.session import get_async_session, tenant_context

TENANT = "current_setting('app.tenant_id', true)::uuid"

PERMISSION_CODES = [
    "production:view",
    "production:manage",
    "scheduling:view",
    "scheduling:manage",
    "oee:view",
    "oee:manage",
    "downtime:view",
    "downtime:manage",
    "quality:view",
    "quality:manage",
    "inventory:view",
    "inventory:manage",
    "master_data:manage",
    "reports:view",
]

VIEW_CODES = [c for c in PERMISSION_CODES if c.endswith(":view")]

ROLE_GRANTS: Dict[str, Tuple[str, List[str]]] = {
    "admin": ("Administrator", PERMISSION_CODES),
    "supervisor": (
        "Production supervisor",
        VIEW_CODES + ["production:manage", "scheduling:manage", "oee:manage", "downtime:manage"],
    ),
    "operator": ("Machine operator", VIEW_CODES),
    "technician": ("Maintenance technician", VIEW_CODES + ["downtime:manage"]),
    "material_handler": ("Material handler", VIEW_CODES + ["inventory:manage"]),
    "quality": ("Quality inspector", VIEW_CODES + ["quality:manage"]),
}

WORK_CENTERS = [
    # code, name, center_type, ideal cycle seconds, asset code, asset name
    ("WC-100", "CNC Milling Center", "machining", 45.0, "CNC-01", "CNC Mill 01"),
    ("WC-200", "Final Assembly", "assembly", 120.0, "ASM-01", "Assembly Cell 01"),
]

PARTS = [
    # part number, name, uom, unit cost, serialized
    ("RAW-AL-ROD", "Aluminum Rod 25mm", "kg", 4.25, False),
    ("FAST-M6", "M6 Fastener Kit", "ea", 0.35, False),
    ("CTRL-100", "Controller Board", "ea", 48.0, True),
    ("WIDGET-100", "Sample Widget", "ea", None, False),
]

LOCATIONS = [
    ("WH-MAIN", "Main Warehouse", "warehouse"),
    ("LINE-1", "Line 1 Supermarket", "line_side"),
]

REASON_CODES = [
    # code, name, category, group, display order
    ("BRK", "Breakdown", "unplanned", "mechanical", 10),
    ("ELEC", "Electrical fault", "unplanned", "electrical", 20),
    ("MAT", "Waiting for material", "unplanned", "material", 30),
    ("QH", "Quality hold", "unplanned", "quality", 40),
    ("CO", "Changeover", "planned", "ops", 50),
    ("PM", "Planned maintenance", "planned", "mechanical", 60),
    ("BRKF", "Scheduled break", "planned", "ops", 70),
]


# PUBLIC_INTERFACE
async def seed_all() -> None:
    """
    Seed the database with minimal reference data.

    Every insert is idempotent, so the seed can be re-run against an existing tenant.
    """
    slug = get_app_settings().DEFAULT_TENANT_SLUG
    async for session in get_async_session():
        tenant_id = await _ensure_base_tenant(session, name="Demo Plant", slug=slug)
        async with tenant_context(session, tenant_id):
            await _seed_security(session)
            work_centers = await _seed_work_centers(session)
            parts, locations = await _seed_parts_and_locations(session)
            await _seed_reason_codes(session)
            await _seed_quality(session, work_centers["WC-100"], parts["WIDGET-100"])
        await session.commit()


async def _ensure_base_tenant(session: AsyncSession, name: str, slug: str) -> UUID:
    """
    Ensure a tenant row exists. RLS on tenants requires setting app.tenant_id
    to the same id being inserted (WITH CHECK id = current_setting()).
    """
    res = await session.execute(text("SELECT id FROM tenants WHERE slug = :slug"), {"slug": slug})
    row = res.first()
    if row:
        return row[0]

    tenant_id = uuid4()
    await session.execute(text("SELECT set_config('app.tenant_id', :tid, false)"), {"tid": str(tenant_id)})
    await session.execute(
        text("INSERT INTO tenants (id, name, slug) VALUES (:id, :name, :slug) ON CONFLICT (slug) DO NOTHING"),
        {"id": str(tenant_id), "name": name, "slug": slug},
    )
    # Fetch id in case it raced
    res = await session.execute(text("SELECT id FROM tenants WHERE slug = :slug"), {"slug": slug})
    row = res.first()
    if not row:
        raise RuntimeError("Failed to create or load base tenant")
    return row[0]


async def _get_or_insert(
    session: AsyncSession,
    table: str,
    key_column: str,
    values: Dict[str, Any],
) -> UUID:
    """Return the id of the tenant row whose key_column matches, inserting `values` when missing."""
    res = await session.execute(
        text(f"SELECT id FROM {table} WHERE tenant_id = {TENANT} AND {key_column} = :key"),
        {"key": values[key_column]},
    )
    row = res.first()
    if row:
        return row[0]

    columns = ", ".join(values)
    params = ", ".join(f":{c}" for c in values)
    inserted = await session.execute(
        text(f"INSERT INTO {table} (tenant_id, {columns}) VALUES ({TENANT}, {params}) RETURNING id"),
        values,
    )
    return inserted.scalar_one()


async def _seed_security(session: AsyncSession) -> None:
    """
    Seed permission codes and operator roles, and tie them together.
    """
    perm_ids: Dict[str, UUID] = {}
    for code in PERMISSION_CODES:
        perm_ids[code] = await _get_or_insert(
            session, "permissions", "code", {"code": code, "description": code.replace(":", " ").title()}
        )

    for role_name, (description, codes) in ROLE_GRANTS.items():
        role_id = await _get_or_insert(session, "roles", "name", {"name": role_name, "description": description})
        for code in codes:
            await session.execute(
                text(
                    f"""
                    INSERT INTO role_permissions (tenant_id, role_id, permission_id)
                    VALUES ({TENANT}, :rid, :pid)
                    ON CONFLICT ON CONSTRAINT uq_role_permissions_tenant_role_permission DO NOTHING
                    """
                ),
                {"rid": str(role_id), "pid": str(perm_ids[code])},
            )


async def _seed_work_centers(session: AsyncSession) -> Dict[str, UUID]:
    """
    Seed work centers, each with one equipment asset.

    Returns:
      dict mapping work center code -> id
    """
    result: Dict[str, UUID] = {}
    for code, name, center_type, cycle_seconds, asset_code, asset_name in WORK_CENTERS:
        wc_id = await _get_or_insert(
            session,
            "work_centers",
            "code",
            {"code": code, "name": name, "center_type": center_type, "ideal_cycle_time_seconds": cycle_seconds},
        )
        await _get_or_insert(
            session,
            "equipment_assets",
            "asset_code",
            {"asset_code": asset_code, "name": asset_name, "work_center_id": str(wc_id)},
        )
        result[code] = wc_id
    return result


async def _seed_parts_and_locations(session: AsyncSession) -> Tuple[Dict[str, UUID], Dict[str, UUID]]:
    """
    Seed parts, stock locations and opening stock of every purchased part in the main warehouse.
    """
    parts: Dict[str, UUID] = {}
    for part_number, name, uom, unit_cost, serialized in PARTS:
        parts[part_number] = await _get_or_insert(
            session,
            "parts",
            "part_number",
            {
                "part_number": part_number,
                "name": name,
                "uom": uom,
                "unit_cost": unit_cost,
                "is_serialized": serialized,
            },
        )

    locations: Dict[str, UUID] = {}
    for code, name, location_type in LOCATIONS:
        locations[code] = await _get_or_insert(
            session, "stock_locations", "code", {"code": code, "name": name, "location_type": location_type}
        )

    for part_number, _name, _uom, unit_cost, serialized in PARTS:
        if unit_cost is None or serialized:
            continue
        await session.execute(
            text(
                f"""
                INSERT INTO part_inventory (tenant_id, part_id, stock_location_id, quantity)
                VALUES ({TENANT}, :pid, :lid, 500)
                ON CONFLICT ON CONSTRAINT uq_part_inventory_part_location DO NOTHING
                """
            ),
            {"pid": str(parts[part_number]), "lid": str(locations["WH-MAIN"])},
        )

    for n in range(1, 4):
        await session.execute(
            text(
                f"""
                INSERT INTO serialized_parts (tenant_id, part_id, serial_number, status, current_location_id)
                VALUES ({TENANT}, :pid, :sn, 'in_stock', :lid)
                ON CONFLICT ON CONSTRAINT uq_serialized_parts_part_serial DO NOTHING
                """
            ),
            {"pid": str(parts["CTRL-100"]), "sn": f"CTRL-{n:04d}", "lid": str(locations["WH-MAIN"])},
        )
    return parts, locations


async def _seed_reason_codes(session: AsyncSession) -> None:
    for code, name, category, group, order in REASON_CODES:
        await _get_or_insert(
            session,
            "downtime_reason_codes",
            "code",
            {"code": code, "name": name, "category": category, "reason_group": group, "display_order": order},
        )


async def _seed_quality(session: AsyncSession, work_center_id: UUID, product_id: UUID) -> None:
    """
    Seed a defect code and an in-process inspection plan for the milling center.
    """
    await _get_or_insert(
        session,
        "defect_codes",
        "code",
        {"code": "DIM-OOT", "name": "Dimension out of tolerance", "category": "dimensional", "severity_default": "MAJOR"},
    )
    plan_id = await _get_or_insert(
        session,
        "inspection_plans",
        "name",
        {
            "name": "Milled widget in-process check",
            "plan_type": "IN_PROCESS",
            "applies_to": "WORK_CENTER",
            "work_center_id": str(work_center_id),
            "product_id": str(product_id),
        },
    )
    res = await session.execute(
        text(f"SELECT count(*) FROM inspection_characteristics WHERE tenant_id = {TENANT} AND inspection_plan_id = :pid"),
        {"pid": str(plan_id)},
    )
    if res.scalar_one():
        return
    await session.execute(
        text(
            f"""
            INSERT INTO inspection_characteristics
                (tenant_id, inspection_plan_id, name, char_type, uom, target_value, lsl, usl, data_capture, sequence)
            VALUES
                ({TENANT}, :pid, 'Bore diameter', 'VARIABLE', 'mm', 10.0, 9.95, 10.05, 'numeric', 1),
                ({TENANT}, :pid, 'Surface finish acceptable', 'ATTRIBUTE', NULL, NULL, NULL, NULL, 'pass_fail', 2)
            """
        ),
        {"pid": str(plan_id)},
    )


# PUBLIC_INTERFACE
def main() -> None:
    """Entrypoint to run the asynchronous seeding."""
    asyncio.run(seed_all())


if __name__ == "__main__":
    main()

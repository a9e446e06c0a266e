"""
API route modules for the shop-floor execution service.

This package contains subrouters for:
- Auth: login, register, logout, refresh, and current user
- Master data: work centers, equipment, parts, locations, BOMs
- Production: orders, steps, holds, material moves, time logs
- Scheduling: board, operation runs, conflicts, capacity
- Inventory, OEE, Downtime, Quality, SPC and Reports

Routers are included from src.api.main (under the /api/v1 prefix).
"""

"""
Cross-cutting pieces of the MES API: settings, logging context, JWT/password
helpers, domain errors and the tenant/RBAC FastAPI dependencies.
"""

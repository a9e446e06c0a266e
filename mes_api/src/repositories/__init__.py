"""
Data access for the shop-floor domain.

Repositories hold the SQLAlchemy queries for one area each and only flush; the
calling service commits. The session must already carry the tenant context
(see src.core.deps.get_tenant_session), since row-level security scopes every query.
"""

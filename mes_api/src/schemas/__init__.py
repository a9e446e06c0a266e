"""
Pydantic request/response models, one module per area: production, scheduling,
inventory, OEE, downtime, quality, SPC, real-time envelopes and the shared
error envelope in common.
"""

from .common import ErrorResponse, MessageResponse  # noqa: F401

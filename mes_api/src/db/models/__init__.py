"""
ORM models for MES entities: tenancy/security, master data, production orders,
scheduling, material consumption, OEE, downtime, quality execution and SPC.

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

from .security import (  # noqa: F401
    Tenant,
    User,
    Role,
    Permission,
    UserRole,
    RolePermission,
)
from .master_data import (  # noqa: F401
    WorkCenter,
    EquipmentAsset,
    Part,
    StockLocation,
)
from .production import (  # noqa: F401
    ProductionOrder,
    ProductionStep,
    BomItem,
    TimeLog,
    MaterialMoveRequest,
)
from .scheduling import OperationRun  # noqa: F401
from .inventory import (  # noqa: F401
    PartInventory,
    SerializedPart,
    MaterialConsumption,
)
from .oee import (  # noqa: F401
    ProductionCount,
    OEESnapshot,
)
from .downtime import (  # noqa: F401
    DowntimeReasonCode,
    EquipmentStateEvent,
    DowntimeEvent,
)
from .quality import (  # noqa: F401
    SamplingPlan,
    InspectionPlan,
    Characteristic,
    InspectionRun,
    Measurement,
    MeasurementRevision,
    DefectCode,
    Nonconformance,
    NCDefect,
    Disposition,
    CAPA,
)
from .spc import (  # noqa: F401
    SPCSubgroup,
    SPCPoint,
    SPCRuleViolation,
)

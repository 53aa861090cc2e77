# Import all models so Base.metadata is populated before create_all.
from coach_core.models.coach_memory import (  # noqa: F401
    CoachMemoryEventRecord,
    RelationshipProfileRecord,
    TrustCurveEntry,
)

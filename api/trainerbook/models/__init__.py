"""All models imported here for Alembic autogenerate discovery."""

from trainerbook.models.academy import Academy, AcademyPolicyOverride, FranchisorPolicy, Franqueadora, PolicyStatus
from trainerbook.models.base import Base
from trainerbook.models.booking import Booking, BookingCancellation, BookingSource, BookingStatus
from trainerbook.models.credit import (
    HourTransaction,
    ProfessorHourBalance,
    StudentClassBalance,
    StudentClassTransaction,
    TransactionSource,
    TransactionType,
)
from trainerbook.models.member import ConnectionStatus, StudentUnit, TeacherStudent, User, UserRole

__all__ = [
    "Base",
    "Franqueadora",
    "Academy",
    "FranchisorPolicy",
    "AcademyPolicyOverride",
    "PolicyStatus",
    "User",
    "UserRole",
    "TeacherStudent",
    "ConnectionStatus",
    "StudentUnit",
    "Booking",
    "BookingStatus",
    "BookingSource",
    "BookingCancellation",
    "StudentClassBalance",
    "ProfessorHourBalance",
    "StudentClassTransaction",
    "HourTransaction",
    "TransactionType",
    "TransactionSource",
]

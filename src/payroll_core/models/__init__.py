"""SQLAlchemy ORM models for the payroll core."""

from payroll_core.models.base import Base, TimestampMixin
from payroll_core.models.company import Company, CompanyPayrollConfig, Department
from payroll_core.models.employee import Claim, Employee
from payroll_core.models.payroll import PayrollItem, PayrollRun

__all__ = [
    "Base",
    "TimestampMixin",
    "Company",
    "CompanyPayrollConfig",
    "Department",
    "Employee",
    "Claim",
    "PayrollRun",
    "PayrollItem",
]

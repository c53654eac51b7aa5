"""Multi-tenant payroll core: statutory deductions, run lifecycle and edits."""

__version__ = "1.0.0"

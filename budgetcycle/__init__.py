"""budgetcycle: budget cycles, allocations and carryover accounting."""

__version__ = "0.1.0"

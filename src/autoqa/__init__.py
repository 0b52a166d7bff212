"""autoqa - autonomous QA agents with budgets, approval gates and crash recovery."""

__version__ = "0.1.0"

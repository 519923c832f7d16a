"""Bill validation package."""

from utility_splitter.validation.validator import BillValidator

__all__ = ["BillValidator"]

"""Read-only query selectors for the royalty kernel."""

from royalty_kernel.selectors.run_selector import RunSelector
from royalty_kernel.selectors.statement_selector import (
    PriorBalance,
    StatementSelector,
)

__all__ = ["PriorBalance", "RunSelector", "StatementSelector"]

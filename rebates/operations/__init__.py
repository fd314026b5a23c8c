"""
Operations Package

Provides the resolver, the audit ledger and the rate mutators.
"""

from .agency_binding import AgencyBindingCoordinator
from .comparison import ComparisonEngine
from .customer_override import CustomerOverrideManager
from .independent import IndependentRateSetter
from .ledger import AuditLedger
from .library import RateLibraryManager
from .resolver import RateResolver

__all__ = [
    "RateResolver",
    "AuditLedger",
    "AgencyBindingCoordinator",
    "IndependentRateSetter",
    "CustomerOverrideManager",
    "ComparisonEngine",
    "RateLibraryManager",
]

"""
Module: treasury_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: tolerance resolution, allocation proposal and
    excess classification.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import treasury_kernel domain values, exceptions and logging.
    MUST NOT import treasury_modules, treasury_config or treasury_api.

Invariants enforced:
    - Engines never read the clock; dates arrive as parameters.
    - Decimal-only arithmetic on fixed-scale Money values.
    - Determinism: identical inputs always produce identical outputs.
"""

from treasury_engines.allocation import (
    AllocationLineProposal,
    AllocationProposer,
    AutoSelectOrder,
    ManualAllocation,
    OpenInvoice,
    PaymentAllocationPreview,
    PaymentAllocationRequest,
)
from treasury_engines.excess import (
    ExcessClassifier,
    ExcessCreditPolicy,
    ExcessHandling,
)
from treasury_engines.tolerance import (
    ToleranceCheck,
    TolerancePolicyLayer,
    ToleranceResolver,
    ToleranceScope,
    ToleranceSettings,
    WriteoffKind,
    check_tolerance,
)

__all__ = [
    "AllocationLineProposal",
    "AllocationProposer",
    "AutoSelectOrder",
    "ManualAllocation",
    "OpenInvoice",
    "PaymentAllocationPreview",
    "PaymentAllocationRequest",
    "ExcessClassifier",
    "ExcessCreditPolicy",
    "ExcessHandling",
    "ToleranceCheck",
    "TolerancePolicyLayer",
    "ToleranceResolver",
    "ToleranceScope",
    "ToleranceSettings",
    "WriteoffKind",
    "check_tolerance",
]

"""
Smart Payment Workflows.

State machines for allocation proposals and invoice settlement.
"""

from dataclasses import dataclass

from treasury_kernel.logging_config import get_logger

logger = get_logger("modules.smart_payment.workflows")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    writes_records: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    @property
    def terminal_states(self) -> tuple[str, ...]:
        sources = {t.from_state for t in self.transitions}
        return tuple(s for s in self.states if s not in sources)

    def transition(
        self, from_state: str, action: str, to_state: str | None = None
    ) -> Transition:
        """
        Find the transition for ``action`` out of ``from_state``.

        Raises:
            ValueError: if the action is not allowed in that state.
        """
        for t in self.transitions:
            if t.from_state != from_state or t.action != action:
                continue
            if to_state is None or t.to_state == to_state:
                return t
        raise ValueError(
            f"{self.name}: action '{action}' not allowed from state '{from_state}'"
        )


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

BALANCES_CURRENT = Guard(
    name="balances_current",
    description="Every targeted invoice balance equals the balance the preview used",
)

BALANCE_ZERO = Guard(
    name="balance_zero",
    description="Invoice balance is zero",
)


# -----------------------------------------------------------------------------
# Allocation Workflow
# -----------------------------------------------------------------------------

ALLOCATION_WORKFLOW = Workflow(
    name="smart_payment_allocation",
    description="Preview, then apply or reject",
    initial_state="proposed",
    states=(
        "proposed",
        "applied",
        "rejected",
    ),
    transitions=(
        Transition("proposed", "applied", action="apply", guard=BALANCES_CURRENT, writes_records=True),
        Transition("proposed", "rejected", action="reject"),
    ),
)


# A stored payment is a live proposal until it is applied.
PAYMENT_STATUS_TO_ALLOCATION_STATE = {
    "unallocated": "proposed",
    "applied": "applied",
}


def allocation_state(payment_status: str) -> str:
    """Allocation workflow state of a payment with the given stored status."""
    return PAYMENT_STATUS_TO_ALLOCATION_STATE[payment_status]


# -----------------------------------------------------------------------------
# Invoice Settlement Workflow
# -----------------------------------------------------------------------------

INVOICE_SETTLEMENT_WORKFLOW = Workflow(
    name="smart_payment_invoice_settlement",
    description="Invoice balance settlement by payment allocation",
    initial_state="open",
    states=(
        "open",
        "partially_paid",
        "paid",
    ),
    transitions=(
        Transition("open", "partially_paid", action="allocate"),
        Transition("open", "paid", action="allocate", guard=BALANCE_ZERO),
        Transition("partially_paid", "partially_paid", action="allocate"),
        Transition("partially_paid", "paid", action="allocate", guard=BALANCE_ZERO),
    ),
)

logger.debug(
    "smart_payment_workflows_registered",
    extra={
        "workflows": [ALLOCATION_WORKFLOW.name, INVOICE_SETTLEMENT_WORKFLOW.name],
    },
)

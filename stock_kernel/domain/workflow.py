"""
Goods received note lifecycle.

State machine for the receiving workflow.  Services ask
``require_transition`` before changing a GRN and get InvalidStateError when
the action is not allowed from the current status.

    Draft --post--> Posted --cancel--> Cancelled
      |                                   ^
      +-------------cancel----------------+
    Draft --edit/delete--> (stays Draft / removed)

Received is a legacy stored status: nothing enters or leaves it.
"""

from dataclasses import dataclass
from uuid import UUID

from stock_kernel.exceptions import InvalidStateError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.grn import GRNStatus

logger = get_logger("domain.workflow")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: GRNStatus
    to_state: GRNStatus | None
    action: str
    guard: Guard | None = None
    moves_stock: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: GRNStatus
    states: tuple[GRNStatus, ...]
    transitions: tuple[Transition, ...]

    def find(self, from_state: GRNStatus, action: str) -> Transition | None:
        for transition in self.transitions:
            if transition.from_state == from_state and transition.action == action:
                return transition
        return None

    def allowed_actions(self, state: GRNStatus) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)


HAS_LINES = Guard(
    name="has_lines",
    description="The goods received note has at least one line item",
)

REVERSAL_WITHIN_RESERVED = Guard(
    name="reversal_within_reserved",
    description="Reversing every receipt keeps on hand at or above reserved",
)


# to_state None means the record is removed (delete) or unchanged (edit).
GRN_WORKFLOW = Workflow(
    name="goods_received_note",
    description="Goods received note receiving lifecycle",
    initial_state=GRNStatus.DRAFT,
    states=tuple(GRNStatus),
    transitions=(
        Transition(GRNStatus.DRAFT, None, action="edit"),
        Transition(GRNStatus.DRAFT, None, action="delete"),
        Transition(GRNStatus.DRAFT, GRNStatus.POSTED, action="post", guard=HAS_LINES, moves_stock=True),
        Transition(GRNStatus.DRAFT, GRNStatus.CANCELLED, action="cancel"),
        Transition(
            GRNStatus.POSTED,
            GRNStatus.CANCELLED,
            action="cancel",
            guard=REVERSAL_WITHIN_RESERVED,
            moves_stock=True,
        ),
    ),
)


def require_transition(
    grn_id: UUID,
    grn_number: str | None,
    status: GRNStatus | str,
    action: str,
) -> Transition:
    """Return the transition for ``action`` from ``status`` or raise InvalidStateError."""
    state = GRNStatus(status)
    transition = GRN_WORKFLOW.find(state, action)
    if transition is None:
        logger.warning(
            "grn_transition_rejected",
            extra={
                "grn_id": str(grn_id),
                "grn_number": grn_number,
                "status": state.value,
                "action": action,
                "allowed": list(GRN_WORKFLOW.allowed_actions(state)),
            },
        )
        raise InvalidStateError(grn_id, grn_number, state.value, action)
    return transition

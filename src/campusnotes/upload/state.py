"""Lifecycle state machine for ``create_with_file``.

Tracks one create call from start to its terminal state and enforces valid
transitions, so a note row can never be written for an object that was not
uploaded and a compensation can never run for a successful insert.
"""

from __future__ import annotations

from campusnotes.models import CreateState


class CreateStateMachine:
    """Finite state machine for a single create-with-file call.

    Valid transitions::

        INIT                -> PROFILE_ENSURED | FAILED
        PROFILE_ENSURED     -> UPLOADING
        UPLOADING           -> UPLOADED | FAILED
        UPLOADED            -> RECORD_INSERTED | COMPENSATING_DELETE
        COMPENSATING_DELETE -> FAILED
        RECORD_INSERTED     -> (terminal)
        FAILED              -> (terminal)

    Parameters
    ----------
    label:
        Identifier used in error messages (typically the storage path or
        the owner id).
    """

    VALID_TRANSITIONS: dict[CreateState, set[CreateState]] = {
        CreateState.INIT: {CreateState.PROFILE_ENSURED, CreateState.FAILED},
        CreateState.PROFILE_ENSURED: {CreateState.UPLOADING},
        CreateState.UPLOADING: {CreateState.UPLOADED, CreateState.FAILED},
        CreateState.UPLOADED: {
            CreateState.RECORD_INSERTED,
            CreateState.COMPENSATING_DELETE,
        },
        CreateState.COMPENSATING_DELETE: {CreateState.FAILED},
        CreateState.RECORD_INSERTED: set(),
        CreateState.FAILED: set(),
    }

    def __init__(self, label: str) -> None:
        self.label: str = label
        self.state: CreateState = CreateState.INIT
        self.history: list[CreateState] = [CreateState.INIT]

    @property
    def is_terminal(self) -> bool:
        return not self.VALID_TRANSITIONS[self.state]

    def transition(self, new_state: CreateState) -> None:
        """Move to *new_state*.

        Raises
        ------
        ValueError
            If the transition from the current state is not valid.
        """
        allowed = self.VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid state transition: {self.state.value} -> {new_state.value} "
                f"for {self.label}. "
                f"Allowed transitions from {self.state.value}: "
                f"{{{', '.join(sorted(s.value for s in allowed))}}}"
            )
        self.state = new_state
        self.history.append(new_state)

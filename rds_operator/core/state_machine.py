"""
Database State Machine for the provisioning operator

This module implements the status state machine a Database resource walks
through while the operator provisions it. It rejects transitions that skip
a step or move backwards.

States:
- (none): Resource has never been reconciled
- Creating: Backing database is being allocated by the provider
- CreatingService: Endpoint record (ExternalName service) is being published
- CreatingConfigMap: Configuration record is being published
- Completed: Fully provisioned, terminal
- Failed: A step failed; message holds the error

Usage:
    >>> from rds_operator.core.state_machine import DatabaseStateMachine
    >>> from rds_operator.models import DatabaseState
    >>>
    >>> DatabaseStateMachine.can_transition(
    ...     DatabaseState.CREATING,
    ...     DatabaseState.CREATING_SERVICE
    ... )
    True
    >>> DatabaseStateMachine.can_transition(
    ...     DatabaseState.CREATING,
    ...     DatabaseState.COMPLETED
    ... )
    False
"""

from typing import Dict, Optional, Set

import structlog

from rds_operator.models.database import DatabaseState

logger = structlog.get_logger(__name__)


class DatabaseStateMachine:
    """
    State machine for Database status.

    A reconciliation starts from any state but Completed (first observation,
    retry after Failed, or resume after a restart left the resource in
    progress) and then advances one step at a time.
    """

    TRANSITIONS: Dict[Optional[DatabaseState], Set[DatabaseState]] = {
        None: {DatabaseState.CREATING},
        DatabaseState.CREATING: {
            DatabaseState.CREATING_SERVICE,  # Provider allocated the database
            DatabaseState.FAILED,
        },
        DatabaseState.CREATING_SERVICE: {
            DatabaseState.CREATING_CONFIG_MAP,  # Endpoint record published
            DatabaseState.FAILED,
        },
        DatabaseState.CREATING_CONFIG_MAP: {
            DatabaseState.COMPLETED,  # Configuration record published
            DatabaseState.FAILED,
        },
        DatabaseState.COMPLETED: set(),  # Terminal state
        DatabaseState.FAILED: set(),  # Left only by starting a new reconciliation
    }

    IN_PROGRESS: Set[DatabaseState] = {
        DatabaseState.CREATING,
        DatabaseState.CREATING_SERVICE,
        DatabaseState.CREATING_CONFIG_MAP,
    }

    @classmethod
    def can_transition(
        cls,
        from_state: Optional[DatabaseState],
        to_state: DatabaseState
    ) -> bool:
        """
        Check if state transition is valid.

        Args:
            from_state: Current state (None when the status is empty)
            to_state: Target state

        Returns:
            True if transition is allowed, False otherwise
        """
        allowed_states = cls.TRANSITIONS.get(from_state, set())
        return to_state in allowed_states

    @classmethod
    def validate_transition(
        cls,
        from_state: Optional[DatabaseState],
        to_state: DatabaseState,
        database: Optional[str] = None
    ) -> None:
        """
        Validate state transition and raise exception if invalid.

        Args:
            from_state: Current state (None when the status is empty)
            to_state: Target state
            database: Optional ``namespace/name`` for logging

        Raises:
            ValueError: If transition is not allowed
        """
        if not cls.can_transition(from_state, to_state):
            from_value = from_state.value if from_state else "none"
            error_msg = f"Invalid state transition from {from_value} to {to_state.value}"
            if database:
                error_msg += f" for database {database}"

            logger.error(
                "invalid_state_transition",
                database=database,
                from_state=from_value,
                to_state=to_state.value,
                allowed_states=[s.value for s in cls.TRANSITIONS.get(from_state, set())]
            )
            raise ValueError(error_msg)

        logger.debug(
            "state_transition_validated",
            database=database,
            from_state=from_state.value if from_state else "none",
            to_state=to_state.value
        )

    @classmethod
    def can_start(cls, current_state: Optional[DatabaseState]) -> bool:
        """
        Check whether a create reconciliation may start from this state.

        Example:
            >>> DatabaseStateMachine.can_start(DatabaseState.FAILED)
            True
            >>> DatabaseStateMachine.can_start(DatabaseState.COMPLETED)
            False
        """
        return current_state != DatabaseState.COMPLETED

    @classmethod
    def is_in_progress(cls, state: Optional[DatabaseState]) -> bool:
        return state in cls.IN_PROGRESS

    @classmethod
    def requires_message(cls, state: DatabaseState) -> bool:
        """In-progress and failure states always carry a message."""
        return state in cls.IN_PROGRESS or state == DatabaseState.FAILED

"""
Core building blocks of the operator.

- State machine for Database status
- Keyed work queue serializing reconciliations per resource

Import directly from submodules:
# from rds_operator.core.state_machine import DatabaseStateMachine
# from rds_operator.core.work_queue import KeyedWorkQueue
"""

__all__ = [
    "DatabaseStateMachine",
    "KeyedWorkQueue",
]

"""
Canonical backfill status values shown beside the dashboard.

Plain class constants (not Python Enum) so they compare and serialize as bare
strings.

Valid state machine:
    IDLE → RUNNING → IDLE
                   → ERROR → RUNNING (next attempt) | IDLE (next successful sync)
"""


class BackfillStatus:
    IDLE = "idle"         # nothing in flight
    RUNNING = "running"   # sync triggers posted, waiting on all of them
    ERROR = "error"       # last attempt failed or hit a cooldown; see error message

    ALL = frozenset({IDLE, RUNNING, ERROR})

    @classmethod
    def is_valid(cls, value: str) -> bool:
        return value in cls.ALL

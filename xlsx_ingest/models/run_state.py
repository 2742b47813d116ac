from __future__ import annotations

from enum import Enum

"""Run lifecycle enums.

State transitions for one export invocation:

    IDLE -> LOADING -> [FILTERING] -> CHUNKING -> WRITING* -> [CHECKPOINTING] -> DONE

FILTERING and CHECKPOINTING only occur in incremental mode.

Any failing step moves straight to FAILED. No rollback of completed batches
is attempted; they remain committed.
"""


class ExportMode(Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class RunState(Enum):
    """Status of an export run.

    - IDLE: orchestrator constructed, nothing read yet
    - LOADING: workbook read, destination tables being ensured
    - CHUNKING: slicing sheet rows into batches
    - FILTERING: selecting rows newer than the checkpoint (incremental)
    - WRITING: duplicate check and insert of the current batch
    - CHECKPOINTING: advancing incremental checkpoints
    - DONE / FAILED: terminal
    """
    IDLE = "idle"
    LOADING = "loading"
    CHUNKING = "chunking"
    FILTERING = "filtering"
    WRITING = "writing"
    CHECKPOINTING = "checkpointing"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED)

"""Batched status checks for outstanding remote tasks.

Remote services answer status queries by set membership, so all handles are
checked with a single call per scheduling cycle rather than one per job.
"""
from seqbatch.log import logger

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
STATUSES = (RUNNING, COMPLETED, FAILED)


def poll(service, handles):
    """Retrieve status for the given task handles in one service call.

    Handles missing from the answer, or reported with an unknown status, are
    treated as still running. TransientRemoteError from the service propagates.
    """
    handles = set(handles)
    if not handles:
        return {}
    found = service.status(handles)
    out = {}
    for handle in handles:
        status = found.get(handle)
        if status not in STATUSES:
            if status is not None:
                logger.debug("Task %s has unexpected status %s, assuming running." % (handle, status))
            status = RUNNING
        out[handle] = status
    return out

"""Commandline interaction with the PATRIC/BV-BRC application service.

Implements the remote execution service used by the scheduler:

- submit(app, params) starts an application and returns its task id
- status(handles) checks a set of task ids with a single query
- running(limit) lists active tasks keyed by their output name

Any failure to run the command line tools or to understand their output is
a TransientRemoteError, so the scheduler retries on its next cycle.
"""
import json
import os
import re
import subprocess

from seqbatch.distributed import poll
from seqbatch.distributed.transaction import tx_tmpdir
from seqbatch.errors import TransientRemoteError
from seqbatch.log import logger, logger_cl

_taskid_pat = re.compile(r"Started task (?P<taskid>\d+)")

STATUS_MAP = {"completed": poll.COMPLETED,
              "failed": poll.FAILED,
              "deleted": poll.FAILED,
              "queued": poll.RUNNING,
              "pending": poll.RUNNING,
              "in-progress": poll.RUNNING}


def check_output(cl):
    logger_cl.debug(" ".join(cl))
    try:
        return subprocess.check_output(cl, stderr=subprocess.STDOUT).decode("utf-8", errors="replace")
    except (subprocess.CalledProcessError, OSError) as e:
        out = getattr(e, "output", None)
        detail = out.decode("utf-8", errors="replace").strip() if out else str(e)
        raise TransientRemoteError("%s failed: %s" % (cl[0], detail))

def map_status(vendor_status):
    return STATUS_MAP.get((vendor_status or "").strip().lower(), poll.RUNNING)

class P3Service(object):
    """Remote execution through the application service command line tools.
    """
    def __init__(self, workspace, config=None, task_limit=1000):
        self.workspace = workspace
        self.config = config or {}
        self.task_limit = task_limit

    def submit(self, app, params):
        """Start an application with the given parameters, returning the task id.
        """
        with tx_tmpdir(self.config) as tmp_dir:
            params_file = os.path.join(tmp_dir, "%s.json" % params.get("output_file", app))
            with open(params_file, "w") as out_handle:
                json.dump(params, out_handle, indent=2)
            status = check_output(["appserv-start-app", app, params_file, self.workspace])
        match = _taskid_pat.search(status)
        if not match:
            raise TransientRemoteError("Unexpected response starting %s: %s" % (app, status.strip()))
        taskid = match.group("taskid")
        logger.debug("Started %s task %s for %s." % (app, taskid, params.get("output_file")))
        return taskid

    def status(self, handles):
        """Check status for all handles with a single query.

        Output lines hold a task id and its state; ids the service does not
        report are left out of the result.
        """
        handles = sorted(handles)
        if not handles:
            return {}
        info = check_output(["appserv-query-tasks"] + handles)
        out = {}
        for parts in (l.split() for l in info.split("\n") if l.strip()):
            if len(parts) >= 2 and parts[0] in handles:
                out[parts[0]] = map_status(parts[1])
        return out

    def running(self, limit=None):
        """Retrieve active tasks keyed by the output name they will produce.
        """
        limit = limit or self.task_limit
        info = check_output(["appserv-enumerate-tasks", str(limit)])
        out = {}
        for parts in (l.split("\t") for l in info.split("\n") if l.strip()):
            if len(parts) >= 4:
                taskid, _, status, output_name = [x.strip() for x in parts[:4]]
                if map_status(status) == poll.RUNNING:
                    out[output_name] = taskid
        return out

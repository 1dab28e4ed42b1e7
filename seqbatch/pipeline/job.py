"""Track one processing job per sample as it moves through pipeline phases.

The registry is the only in-memory state of a run. Jobs are created once at
startup, advance one phase at a time and are never removed: they finish as
terminal or abandoned.
"""
import collections

from seqbatch.log import logger

PENDING = "pending"
IN_FLIGHT = "in_flight"
TERMINAL = "terminal"
ABANDONED = "abandoned"

JobError = collections.namedtuple("JobError", ["phase", "stage", "kind", "message"])

class Job(object):
    """Progress of a single sample through the ordered phases.

    attrs holds the immutable per-sample inputs discovered at enumeration
    (read files, alignment genome, sample directory). Phase inputs and outputs
    are derived from the id, attrs and configuration by the workflow.
    """
    def __init__(self, job_id, final_phase, attrs=None):
        self._id = job_id
        self.final_phase = final_phase
        self.attrs = dict(attrs or {})
        self.phase = 0
        self.task_handle = None
        self.abandoned = False
        self.failures = collections.Counter()
        self.submit_errors = 0
        self.errors = []
        self.skipped = []
        self.completed = set()

    @property
    def id(self):
        return self._id

    @property
    def terminal(self):
        return self.phase >= self.final_phase

    @property
    def state(self):
        if self.terminal:
            return TERMINAL
        elif self.abandoned:
            return ABANDONED
        elif self.task_handle is not None:
            return IN_FLIGHT
        else:
            return PENDING

    def needs_task(self):
        return self.state == PENDING

    def merge_phase(self, phase):
        """Update this job so that it is at least at the specified phase.

        Returns True if the job moved forward.
        """
        if phase > self.phase:
            self.phase = min(phase, self.final_phase)
            return True
        return False

    def attach(self, handle):
        assert self.task_handle is None, "Job %s already has task %s" % (self.id, self.task_handle)
        self.task_handle = handle
        self.submit_errors = 0

    def release(self):
        handle = self.task_handle
        self.task_handle = None
        return handle

    def advance(self):
        """Move to the next phase, clearing any finished task.

        Returns True if the job is now terminal.
        """
        assert not self.terminal, "Job %s is already finished" % self.id
        assert self.phase not in self.completed, \
            "Job %s completed phase %s twice" % (self.id, self.phase)
        self.completed.add(self.phase)
        self.task_handle = None
        self.phase += 1
        return self.terminal

    def abandon(self):
        self.task_handle = None
        self.abandoned = True

    def record_error(self, stage, kind, message):
        self.errors.append(JobError(self.phase, stage, kind, str(message)))

    def record_skip(self, stage, reason):
        self.skipped.append((stage, reason))

    def __repr__(self):
        return "Job(%s, phase=%s, state=%s)" % (self.id, self.phase, self.state)

class JobRegistry(object):
    """Holds all jobs of a run keyed by sample identifier.
    """
    def __init__(self, jobs=None):
        self._jobs = collections.OrderedDict()
        for job in jobs or []:
            self.add(job)

    @classmethod
    def from_samples(cls, samples, catalog):
        """Create a job for each (sample id, attributes) pair.
        """
        final_phase = catalog.terminal.index
        return cls(Job(sample_id, final_phase, attrs) for sample_id, attrs in samples)

    def add(self, job):
        if job.id in self._jobs:
            raise ValueError("Duplicate job identifier: %s" % job.id)
        self._jobs[job.id] = job
        return job

    def get(self, job_id):
        return self._jobs.get(job_id)

    def __len__(self):
        return len(self._jobs)

    def __iter__(self):
        return iter(self.jobs())

    def jobs(self):
        """All jobs in stable order, by identifier.
        """
        return [self._jobs[k] for k in sorted(self._jobs)]

    def in_flight(self):
        return [j for j in self.jobs() if j.state == IN_FLIGHT]

    def pending(self):
        return [j for j in self.jobs() if j.state == PENDING]

    def incomplete(self):
        return [j for j in self.jobs() if j.state in (PENDING, IN_FLIGHT)]

    def by_handle(self):
        return {j.task_handle: j for j in self.in_flight()}

    def summary(self):
        """Count jobs by state and collect job scoped errors and skips.
        """
        counts = collections.Counter(j.state for j in self.jobs())
        return {"total": len(self._jobs),
                "states": dict(counts),
                "errors": {j.id: list(j.errors) for j in self.jobs() if j.errors},
                "skipped": {j.id: list(j.skipped) for j in self.jobs() if j.skipped},
                "abandoned": [j.id for j in self.jobs() if j.state == ABANDONED],
                "incomplete": [j.id for j in self.jobs() if j.state in (PENDING, IN_FLIGHT)]}

def log_summary(summary):
    """Report end of run state, including job scoped errors.
    """
    logger.info("Run finished: %s jobs, %s" % (summary["total"],
                ", ".join("%s %s" % (v, k) for k, v in sorted(summary["states"].items()))))
    for job_id, skips in sorted(summary["skipped"].items()):
        for stage, reason in skips:
            logger.notice("Job %s skipped %s: %s" % (job_id, stage, reason))
    for job_id, errors in sorted(summary["errors"].items()):
        for e in errors:
            logger.warn("Job %s %s in %s: %s" % (job_id, e.kind, e.stage, e.message))
    if summary["abandoned"]:
        logger.warn("Abandoned jobs: %s" % ", ".join(summary["abandoned"]))
    if summary["incomplete"]:
        logger.info("Jobs left incomplete: %s" % ", ".join(summary["incomplete"]))

"""Fake remote service and artifact store used to exercise scheduling."""
import collections
import subprocess

import pytest

from seqbatch.distributed import poll
from seqbatch.errors import TransientRemoteError
from seqbatch.pipeline import job, stages


class FakeService(object):
    """Remote service whose tasks finish after a fixed number of status polls.

    script maps (job id, stage name) to a list of final statuses handed out in
    order for successive submissions; unscripted tasks complete. Completed
    tasks create their phase artifact in the attached store.
    """
    def __init__(self, store=None, polls=1, script=None):
        self.store = store
        self.polls = polls
        self.script = collections.defaultdict(list, script or {})
        self.submitted = []
        self.status_calls = []
        self.tasks = {}
        self.outstanding_max = 0
        self.submit_errors = collections.Counter()
        self.status_errors = 0
        self.already_running = {}

    def submit(self, app, params):
        key = (params["job"], app)
        if self.submit_errors[key] > 0:
            self.submit_errors[key] -= 1
            raise TransientRemoteError("connection refused")
        handle = "task-%s" % (len(self.submitted) + 1)
        final = self.script[key].pop(0) if self.script[key] else poll.COMPLETED
        self.tasks[handle] = {"key": key, "left": self.polls, "final": final}
        self.submitted.append((params["job"], app, handle))
        self.outstanding_max = max(self.outstanding_max, len(self.outstanding()))
        return handle

    def outstanding(self):
        return [h for h, t in self.tasks.items() if t["left"] >= 0]

    def status(self, handles):
        self.status_calls.append(set(handles))
        if self.status_errors > 0:
            self.status_errors -= 1
            raise TransientRemoteError("timed out")
        out = {}
        for handle in handles:
            task = self.tasks[handle]
            task["left"] -= 1
            if task["left"] > 0:
                out[handle] = poll.RUNNING
            else:
                task["left"] = -1
                out[handle] = task["final"]
                if task["final"] == poll.COMPLETED and self.store is not None:
                    self.store.add(task["key"])
        return out

    def running(self, limit=None):
        return dict(self.already_running)

    def submissions(self, job_id=None):
        return [(j, app) for j, app, _ in self.submitted if job_id is None or j == job_id]


class FakeStore(object):
    """Record of which (job id, stage name) artifacts exist."""
    def __init__(self, existing=None):
        self.existing = set(existing or [])

    def add(self, key):
        self.existing.add(key)

    def exists(self, key):
        return key in self.existing


class FakeProgram(object):
    """Local program returning scripted exit codes per (job id, stage name)."""
    def __init__(self, store, codes=None):
        self.store = store
        self.codes = collections.defaultdict(list, codes or {})
        self.calls = []

    def run(self, job_id, stage_name):
        self.calls.append((job_id, stage_name))
        code = self.codes[(job_id, stage_name)].pop(0) if self.codes[(job_id, stage_name)] else 0
        if code != 0:
            raise subprocess.CalledProcessError(code, "%s %s" % (stage_name, job_id))
        self.store.add((job_id, stage_name))


def build_catalog(modes, store, service, program=None, policies=None, sizes=None):
    """Catalog with one stage per (name, mode) pair whose artifacts live in store."""
    policies = policies or {}
    catalog = stages.StageCatalog()
    for name, mode in modes:
        def is_done(j, name=name):
            return store.exists((j.id, name))
        if mode == stages.ASYNC_REMOTE:
            def submit(j, name=name):
                return service.submit(name, {"job": j.id})
        else:
            def submit(j, name=name):
                program.run(j.id, name)
        size_of = None
        if sizes is not None:
            def size_of(j, name=name):
                return sizes.get((j.id, name))
        catalog.add(name, mode, is_done, submit, size_of=size_of, policy=policies.get(name))
    catalog.close()
    return catalog


def build_registry(job_ids, catalog):
    return job.JobRegistry.from_samples([(x, {}) for x in job_ids], catalog)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def service(store):
    return FakeService(store)


@pytest.fixture
def program(store):
    return FakeProgram(store)


@pytest.fixture
def fakes():
    """Access to the fake classes and builders from test modules."""
    return collections.namedtuple("Fakes", ["Service", "Store", "Program", "catalog", "registry"])(
        FakeService, FakeStore, FakeProgram, build_catalog, build_registry)

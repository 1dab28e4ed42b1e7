"""Ordered catalog of pipeline phases and how each one executes.

Each phase is a StageDescriptor: a tagged record holding the execution mode
and the per-mode functions, rather than a class hierarchy.

- is_done(job) -> bool checks whether the phase artifact already exists. It is
  used to skip work on restart and to confirm synchronous completion.
- submit(job) runs a SYNC_LOCAL phase to completion, raising on failure, or
  dispatches an ASYNC_REMOTE phase and returns the remote task handle.
- size_of(job), when present, measures the phase input so it can be compared
  against the configured artifact size ceiling.
- skip(job), when present, raises SkippedByPolicy for workflow specific rules.
"""
import collections

from seqbatch.pipeline import config_utils

SYNC_LOCAL = "sync_local"
ASYNC_REMOTE = "async_remote"
TERMINAL = "terminal"
MODES = (SYNC_LOCAL, ASYNC_REMOTE, TERMINAL)

# outcomes of starting a phase
SUCCESS = "success"
FAILURE = "failure"
SKIPPED = "skipped"
SUBMITTED = "submitted"
DEFERRED = "deferred"

StageDescriptor = collections.namedtuple("StageDescriptor",
                                         ["index", "name", "mode", "is_done", "submit",
                                          "size_of", "skip", "policy"])

def _never_done(job):
    return False

class StageCatalog(object):
    """Fixed ordering of phases, closed by a single terminal phase.
    """
    def __init__(self, stages=None):
        self._stages = []
        self._sealed = False
        for stage in stages or []:
            self.add(**stage)

    def add(self, name, mode, is_done=None, submit=None, size_of=None, skip=None, policy=None):
        """Append a phase to the end of the catalog.
        """
        if self._sealed:
            raise ValueError("Cannot add stage %s after the terminal stage" % name)
        if mode not in MODES:
            raise ValueError("Unexpected execution mode for stage %s: %s" % (name, mode))
        if name in self.names():
            raise ValueError("Duplicate stage name: %s" % name)
        if mode != TERMINAL and submit is None:
            raise ValueError("Stage %s needs a submit function" % name)
        stage = StageDescriptor(len(self._stages), name, mode, is_done or _never_done,
                                submit, size_of, skip, policy or {})
        self._stages.append(stage)
        if mode == TERMINAL:
            self._sealed = True
        return stage

    def close(self, name="done"):
        """Finish the catalog with the terminal phase.
        """
        return self.add(name, TERMINAL)

    def __iter__(self):
        return iter(self._stages)

    def __len__(self):
        return len(self._stages)

    def __getitem__(self, index):
        return self._stages[index]

    def names(self):
        return [s.name for s in self._stages]

    def by_name(self, name):
        for stage in self._stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    @property
    def terminal(self):
        if not self._sealed:
            raise ValueError("Stage catalog has no terminal stage")
        return self._stages[-1]

    def stage_for(self, job):
        return self._stages[job.phase]

    def failure_policy(self, stage, config):
        """Resolve retry/abandon handling for a stage from configuration.
        """
        return config_utils.get_stage_policy(stage.name, config, stage.policy)

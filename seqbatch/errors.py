"""Exceptions raised while driving samples through pipeline phases.

Errors fall into two scopes. Job scoped errors (transient remote problems,
stage failures and policy skips) are recorded against the job and summarized
at the end of a run. ConfigurationFatal is run scoped and stops everything.
"""


class SeqbatchError(Exception):
    pass


class TransientRemoteError(SeqbatchError):
    """Submission or status query failed at the transport level.
    """
    pass


class StageFailure(SeqbatchError):
    """A remote task or local program reported failure for a job phase.
    """
    pass


class ConfigurationFatal(SeqbatchError):
    """Misconfigured environment or missing mandatory input; aborts the run.
    """
    pass


class SkippedByPolicy(SeqbatchError):
    """A phase should be marked done without running it.

    Raised by skip checks, such as an input above the configured size
    ceiling, and converted by the submitter into a skipped outcome.
    """
    def __init__(self, reason):
        super(SkippedByPolicy, self).__init__(reason)
        self.reason = reason

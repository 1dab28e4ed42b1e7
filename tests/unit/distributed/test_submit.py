import subprocess

import pytest

from seqbatch.distributed import submit
from seqbatch.errors import (ConfigurationFatal, SkippedByPolicy, StageFailure,
                             TransientRemoteError)
from seqbatch.pipeline import job, stages


def _stage(mode, submit_fn, is_done=None, size_of=None, skip=None):
    return stages.StageDescriptor(0, "phase", mode, is_done or (lambda j: True),
                                  submit_fn, size_of, skip, {})


@pytest.fixture
def sample():
    return job.Job("S1", 2)


def test_check_skip_size(sample, config):
    stage = _stage(stages.ASYNC_REMOTE, None, size_of=lambda j: 250000000)
    assert "exceeds limit" in submit.check_skip(sample, stage, config)
    stage = _stage(stages.ASYNC_REMOTE, None, size_of=lambda j: None)
    assert submit.check_skip(sample, stage, config) is None
    config["scheduler"]["artifact_size_limit"] = None
    stage = _stage(stages.ASYNC_REMOTE, None, size_of=lambda j: 250000000)
    assert submit.check_skip(sample, stage, config) is None


def test_check_skip_policy(sample, config):
    def no_bins(j):
        raise SkippedByPolicy("no bins found")
    stage = _stage(stages.SYNC_LOCAL, None, skip=no_bins)
    assert submit.check_skip(sample, stage, config) == "no bins found"
    assert submit.skip(sample, stage, "no bins found") == stages.SKIPPED
    assert sample.skipped == [("phase", "no bins found")]


def test_start_local_success(sample, config):
    ran = []
    stage = _stage(stages.SYNC_LOCAL, ran.append)
    assert submit.start(sample, stage, config) == stages.SUCCESS
    assert ran == [sample]


def test_start_local_missing_output(sample, config):
    stage = _stage(stages.SYNC_LOCAL, lambda j: None, is_done=lambda j: False)
    assert submit.start(sample, stage, config) == stages.FAILURE
    assert sample.errors[0].kind == "failure"


@pytest.mark.parametrize("exc", [subprocess.CalledProcessError(1, "generate"),
                                 StageFailure("no reads"), IOError("disk full")])
def test_start_local_failure(sample, config, exc):
    def fail(j):
        raise exc
    assert submit.start(sample, _stage(stages.SYNC_LOCAL, fail), config) == stages.FAILURE
    assert len(sample.errors) == 1


def test_start_local_environment_error(sample, config):
    def fail(j):
        raise subprocess.CalledProcessError(2, "perl bins_generate.pl")
    with pytest.raises(ConfigurationFatal):
        submit.start(sample, _stage(stages.SYNC_LOCAL, fail), config)


def test_start_remote(sample, config):
    assert submit.start(sample, _stage(stages.ASYNC_REMOTE, lambda j: "42"), config) == stages.SUBMITTED
    assert sample.task_handle == "42"
    with pytest.raises(AssertionError):
        submit.start(sample, _stage(stages.ASYNC_REMOTE, lambda j: "43"), config)


def test_start_remote_deferred_then_abandoned(sample, config):
    def down(j):
        raise TransientRemoteError("service unavailable")
    stage = _stage(stages.ASYNC_REMOTE, down)
    config["scheduler"]["max_submit_retries"] = 1
    assert submit.start(sample, stage, config) == stages.DEFERRED
    assert sample.state == job.PENDING
    assert submit.start(sample, stage, config) == stages.FAILURE
    assert sample.state == job.ABANDONED


def test_start_remote_refused(sample, config):
    def refuse(j):
        raise StageFailure("expected two read files")
    assert submit.start(sample, _stage(stages.ASYNC_REMOTE, refuse), config) == stages.FAILURE
    assert sample.state == job.PENDING


def test_start_terminal_rejected(sample, config):
    with pytest.raises(ValueError):
        submit.start(sample, _stage(stages.TERMINAL, None), config)


def test_start_local_unreachable_store(sample, config):
    def listing_down(j):
        raise TransientRemoteError("p3-ls failed: timed out")
    stage = _stage(stages.SYNC_LOCAL, lambda j: None, is_done=listing_down)
    assert submit.start(sample, stage, config) == stages.DEFERRED
    assert sample.state == job.PENDING
    assert sample.errors == []
    stage = _stage(stages.SYNC_LOCAL, listing_down)
    assert submit.start(sample, stage, config) == stages.DEFERRED

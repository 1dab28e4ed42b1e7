"""Start a pipeline phase for a job, inline or through the remote service.
"""
import subprocess

from seqbatch.errors import (ConfigurationFatal, SkippedByPolicy, StageFailure,
                             TransientRemoteError)
from seqbatch.log import logger
from seqbatch.pipeline import datadict as dd
from seqbatch.pipeline import stages
from seqbatch.provenance import do


def check_skip(job, stage, config):
    """Return a reason to mark this phase done without running it, or None.

    Inputs above the configured artifact size ceiling are skipped, as are
    phases whose workflow skip check raises SkippedByPolicy.
    """
    try:
        if stage.skip:
            stage.skip(job)
        limit = dd.get_artifact_size_limit(config)
        if stage.size_of and limit:
            size = stage.size_of(job)
            if size is not None and size > int(limit):
                raise SkippedByPolicy("input size %s exceeds limit %s" % (size, limit))
    except SkippedByPolicy as e:
        return e.reason
    return None

def skip(job, stage, reason):
    logger.notice("Job %s skipping phase %s: %s" % (job.id, stage.name, reason))
    job.record_skip(stage.name, reason)
    return stages.SKIPPED

def start(job, stage, config):
    """Start the job's current phase, returning the outcome.

    SYNC_LOCAL phases run to completion here and return SUCCESS or FAILURE,
    or DEFERRED when the output store cannot be reached to confirm the result.
    ASYNC_REMOTE phases return SUBMITTED with the task handle attached to the
    job, DEFERRED on a transport error, or FAILURE if the request was refused.
    A program exiting with the reserved environment code raises
    ConfigurationFatal. Callers check for policy skips first with check_skip.
    """
    assert job.needs_task(), "Job %s cannot start %s in state %s" % (job.id, stage.name, job.state)
    if stage.mode == stages.SYNC_LOCAL:
        return _run_local(job, stage)
    elif stage.mode == stages.ASYNC_REMOTE:
        return _dispatch(job, stage, config)
    else:
        raise ValueError("Cannot start %s phase %s for job %s" % (stage.mode, stage.name, job.id))

def _run_local(job, stage):
    logger.info("Running job %s phase %s." % (job.id, stage.name))
    try:
        stage.submit(job)
    except subprocess.CalledProcessError as e:
        if do.is_environment_error(e):
            raise ConfigurationFatal("Exit code %s from phase %s of job %s. Probable program "
                                     "environment error, such as PERL5LIB."
                                     % (e.returncode, stage.name, job.id))
        return _failed(job, stage, "exit code %s" % e.returncode)
    except TransientRemoteError as e:
        logger.warn("Job %s phase %s could not reach the remote service, rerunning next cycle: %s"
                    % (job.id, stage.name, e))
        return stages.DEFERRED
    except (StageFailure, IOError) as e:
        return _failed(job, stage, e)
    try:
        done = stage.is_done(job)
    except TransientRemoteError as e:
        logger.warn("Job %s could not confirm output of phase %s, rerunning next cycle: %s"
                    % (job.id, stage.name, e))
        return stages.DEFERRED
    if not done:
        return _failed(job, stage, "no output artifact produced")
    logger.info("Job %s completed phase %s." % (job.id, stage.name))
    return stages.SUCCESS

def _dispatch(job, stage, config):
    logger.info("Starting job %s phase %s." % (job.id, stage.name))
    try:
        handle = stage.submit(job)
    except TransientRemoteError as e:
        job.submit_errors += 1
        ceiling = dd.get_max_submit_retries(config)
        if ceiling is not None and job.submit_errors > int(ceiling):
            logger.error("Job %s could not submit phase %s after %s attempts: %s"
                         % (job.id, stage.name, job.submit_errors, e))
            job.record_error(stage.name, "submission", e)
            job.abandon()
            return stages.FAILURE
        logger.warn("Job %s submission of phase %s failed, retrying next cycle: %s"
                    % (job.id, stage.name, e))
        return stages.DEFERRED
    except StageFailure as e:
        return _failed(job, stage, e)
    job.attach(handle)
    logger.debug("Job %s phase %s running as task %s." % (job.id, stage.name, handle))
    return stages.SUBMITTED

def _failed(job, stage, message):
    logger.warn("Job %s failed in phase %s: %s" % (job.id, stage.name, message))
    job.record_error(stage.name, "failure", message)
    return stages.FAILURE

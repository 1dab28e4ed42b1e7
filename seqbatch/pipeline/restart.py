"""Infer already completed work from existing output artifacts.

Restarting after a crash or interruption must not redo expensive remote
work. Instead of a persisted job log, each job's starting phase is derived
from which phase artifacts already exist. An artifact that exists but is
truncated or corrupt counts as done.
"""
from seqbatch.errors import TransientRemoteError
from seqbatch.log import logger
from seqbatch.pipeline import stages


def start_phase(job, catalog):
    """Highest phase index such that every earlier phase has its artifact.

    Read only: the only side effects are existence checks. An artifact store
    that cannot be reached counts the phase as not done, so the scheduler
    deals with it.
    """
    for stage in catalog:
        if stage.mode == stages.TERMINAL:
            return stage.index
        try:
            done = stage.is_done(job)
        except TransientRemoteError as e:
            logger.warn("Could not check phase %s output of job %s, starting there: %s"
                        % (stage.name, job.id, e))
            done = False
        if not done:
            return stage.index
    return catalog.terminal.index

def scan(registry, catalog):
    """Seed every job in the registry with its effective starting phase.

    Returns the number of jobs moved past their first phase.
    """
    logger.info("Scanning existing outputs for %s jobs." % len(registry))
    updated = 0
    for job in registry.jobs():
        phase = start_phase(job, catalog)
        if job.merge_phase(phase):
            updated += 1
            logger.info("Job %s resumes at phase %s." % (job.id, catalog[job.phase].name))
    logger.info("Output scan complete. %s job updates recorded." % updated)
    return updated

def adopt_running(registry, catalog, service, output_name, limit=None, max_tasks=None):
    """Attach remote tasks that are already running to the jobs that own them.

    output_name(job, stage) gives the remote output name a task for the job's
    current phase would produce. Tasks are matched against it so a job is
    polled instead of resubmitted. Every matching task is adopted even past
    max_tasks; new submissions wait until the count drops below it. Returns
    the number of adopted tasks.
    """
    logger.info("Checking for status of running jobs.")
    try:
        running = service.running(limit)
    except TransientRemoteError as e:
        logger.warn("Could not list running tasks, submitting all pending phases: %s" % e)
        return 0
    logger.info("%s jobs are already running." % len(running))
    adopted = 0
    for job in registry.pending():
        stage = catalog.stage_for(job)
        if stage.mode != stages.ASYNC_REMOTE:
            continue
        handle = running.get(output_name(job, stage))
        if handle is not None:
            job.attach(handle)
            adopted += 1
            logger.info("Job %s adopted running task %s for phase %s." % (job.id, handle, stage.name))
    if max_tasks is not None and adopted > int(max_tasks):
        logger.warn("%s running tasks adopted, above the limit of %s. No new tasks start until "
                    "enough of them finish." % (adopted, max_tasks))
    return adopted

"""Cooperative control loop advancing all jobs through their phases.

A single loop drives every job: no per-job threads. Each cycle applies all
status updates from one batched poll before any new submissions, keeps the
number of outstanding remote tasks under the configured maximum and then
sleeps. The loop ends when every job is terminal or abandoned, or when the
iteration budget runs out.
"""
import time

from seqbatch.errors import TransientRemoteError
from seqbatch.log import logger
from seqbatch.pipeline import config_utils, stages
from seqbatch.pipeline import datadict as dd
from seqbatch.distributed import poll, submit


class Scheduler(object):
    """Drive the jobs of a registry through a stage catalog.

    service is the remote ExecutionService used for status polling; stage
    submit functions hold their own reference for dispatch. sleep is
    injectable so tests can run cycles without waiting.
    """
    def __init__(self, registry, catalog, service, config, sleep=time.sleep):
        self.registry = registry
        self.catalog = catalog
        self.service = service
        self.config = config
        self.sleep = sleep
        self.max_tasks = int(dd.get_max_concurrent_tasks(config))
        self.poll_failures = 0
        self.cycles = 0

    def run(self):
        """Loop until all jobs finish or the iteration budget is exhausted.

        A negative maximum iteration count loops until completion. Running out
        of iterations is not an error; the summary reports unfinished jobs.
        """
        remaining = int(dd.get_max_iterations(self.config))
        wait = float(dd.get_poll_interval(self.config))
        incomplete = self.registry.incomplete()
        while incomplete and remaining != 0:
            logger.info("%s jobs in progress." % len(incomplete))
            self.cycle()
            incomplete = self.registry.incomplete()
            remaining -= 1
            if incomplete and remaining != 0:
                logger.info("Sleeping. %s cycles left." % remaining)
                self.sleep(wait)
        if incomplete:
            logger.info("Iteration limit reached with %s jobs unfinished." % len(incomplete))
        return self.registry.summary()

    def cycle(self):
        """Run one scheduling pass, returning the jobs that submitted remote tasks.
        """
        self.cycles += 1
        in_flight = self.registry.by_handle()
        needs_task = self.registry.pending()
        for job in self._apply_status(in_flight):
            if job not in needs_task:
                needs_task.append(job)
        slots = self.max_tasks - len(self.registry.in_flight())
        logger.debug("Cycle %s: %s tasks running, %s slots, %s jobs waiting."
                     % (self.cycles, self.max_tasks - slots, slots, len(needs_task)))
        started = []
        for job in sorted(needs_task, key=lambda j: j.id):
            used = self._advance(job, slots)
            if used:
                slots -= used
                started.append(job)
        return started

    def _apply_status(self, in_flight):
        """Record completed and failed tasks, returning jobs ready to start.
        """
        try:
            statuses = poll.poll(self.service, in_flight.keys())
            self.poll_failures = 0
        except TransientRemoteError as e:
            self.poll_failures += 1
            ceiling = dd.get_max_poll_failures(self.config)
            msg = "Status query failed %s times in a row: %s" % (self.poll_failures, e)
            if ceiling is not None and self.poll_failures > int(ceiling):
                logger.error(msg)
            else:
                logger.warn(msg)
            return []
        ready = []
        for handle in sorted(statuses):
            job = in_flight[handle]
            stage = self.catalog.stage_for(job)
            status = statuses[handle]
            if status == poll.COMPLETED:
                logger.info("Job %s completed phase %s." % (job.id, stage.name))
                if not job.advance():
                    ready.append(job)
            elif status == poll.FAILED:
                job.release()
                job.record_error(stage.name, "failure", "task %s failed" % handle)
                if self._apply_failure_policy(job, stage):
                    ready.append(job)
            else:
                logger.debug("Job %s still executing phase %s." % (job.id, stage.name))
        return ready

    def _apply_failure_policy(self, job, stage):
        """Decide between retrying and abandoning a failed phase.

        Returns True if the job should be started again.
        """
        job.failures[job.phase] += 1
        policy = self.catalog.failure_policy(stage, self.config)
        failures = job.failures[job.phase]
        if policy["on_failure"] == config_utils.ABANDON:
            logger.error("Job %s failed in phase %s. Abandoning for this run." % (job.id, stage.name))
            job.abandon()
            return False
        elif policy["max_retries"] is not None and failures > int(policy["max_retries"]):
            logger.error("Job %s failed in phase %s %s times. Abandoning for this run."
                         % (job.id, stage.name, failures))
            job.abandon()
            return False
        else:
            logger.warn("Job %s failed in phase %s. Retrying." % (job.id, stage.name))
            return True

    def _advance(self, job, slots):
        """Start phases for a job until it waits on a remote task or cannot proceed.

        Synchronous phases run inline, back to back, without using slots.
        Returns the number of slots consumed.
        """
        while job.needs_task():
            stage = self.catalog.stage_for(job)
            reason = submit.check_skip(job, stage, self.config)
            if reason:
                submit.skip(job, stage, reason)
                job.advance()
                continue
            if stage.mode == stages.ASYNC_REMOTE and slots <= 0:
                return 0
            outcome = submit.start(job, stage, self.config)
            if outcome == stages.SUCCESS:
                job.advance()
            elif outcome == stages.SUBMITTED:
                return 1
            elif outcome == stages.FAILURE:
                if not job.abandoned:
                    self._apply_failure_policy(job, stage)
                return 0
            else:
                return 0
        return 0

"""Main entry point for restartable sample batch pipelines.

Handles running a full workflow: finding samples, working out completed
phases from existing outputs, then scheduling the remaining work.
"""
import os

from seqbatch import log, utils
from seqbatch.distributed import objectstore, p3
from seqbatch.distributed.scheduler import Scheduler
from seqbatch.log import logger
from seqbatch.pipeline import config_utils, job, restart
from seqbatch.pipeline import datadict as dd
from seqbatch import workflow


def run_main(config_file, workflow_name, workdir=None, overrides=None, service=None,
             local=None, workspace=None, sleep=None):
    """Run a workflow, handling configuration and logging setup.

    Returns the run summary. ConfigurationFatal propagates to the caller.
    """
    workdir = utils.safe_makedir(os.path.abspath(workdir or os.getcwd()))
    config = config_utils.load_config(config_file) if config_file else config_utils.prepare_config({})
    if overrides:
        config = config_utils.prepare_config(config_utils.merge_defaults(overrides, config))
    if not os.path.isabs(config["log_dir"]):
        config["log_dir"] = os.path.join(workdir, config["log_dir"])
    config = dd.set_work_dir(config, workdir)
    handler = log.setup_local_logging(config)
    try:
        if config_file:
            logger.info("Configuration: %s" % os.path.abspath(config_file))
        with utils.chdir(workdir):
            return run_workflow(config, workflow_name, service, local, workspace, sleep)
    finally:
        handler.pop_application()
        handler.close()

def run_workflow(config, workflow_name, service=None, local=None, workspace=None, sleep=None):
    """Build jobs for a workflow, restore progress from outputs and schedule the rest.
    """
    flow = workflow.get_workflow(workflow_name)
    local = local or objectstore.LocalStore()
    workspace = workspace or objectstore.WorkspaceStore()
    service = service or p3.P3Service(dd.get_workspace(config), config, dd.get_task_limit(config))
    catalog = flow.build_catalog(config, local, workspace, service)
    logger.info("Workflow %s phases: %s" % (workflow_name, ", ".join(catalog.names())))
    registry = job.JobRegistry.from_samples(flow.enumerate_samples(config, local, workspace), catalog)
    flow.prepare(config, local, workspace, registry)
    restart.scan(registry, catalog)
    restart.adopt_running(registry, catalog, service, flow.output_name, dd.get_task_limit(config),
                          dd.get_max_concurrent_tasks(config))
    kwargs = {"sleep": sleep} if sleep else {}
    summary = Scheduler(registry, catalog, service, config, **kwargs).run()
    job.log_summary(summary)
    flow.finalize(config, local, registry)
    return summary

#!/usr/bin/env python -Es
"""Drive a batch of samples through a restartable processing workflow.

Phases already finished are detected from their output files, so the same
command can be rerun after an interruption and only remaining work is done.

Usage:
  seqbatch_pipeline.py <config_file> <workflow>
     workflow is one of:
          - rnaseq: trim, align and collect FPKM results for paired reads
          - binning: bin, annotate and evaluate assembled samples
"""
import argparse
import os
import sys

from seqbatch.errors import ConfigurationFatal
from seqbatch.pipeline import version
from seqbatch.pipeline.main import run_main
from seqbatch.workflow import WORKFLOWS


def parse_cl_args(in_args):
    """Parse input commandline arguments into keyword arguments for run_main.
    """
    description = "Restartable batch processing of sequencing samples."
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("config_file", nargs="?",
                        help="YAML configuration file with workflow and scheduler settings")
    parser.add_argument("workflow", nargs="?", choices=sorted(WORKFLOWS),
                        help="Workflow to run")
    parser.add_argument("--workdir", default=os.getcwd(),
                        help=("Directory to process in. Defaults to "
                              "current working directory"))
    parser.add_argument("--maxIter", type=int,
                        help="Maximum number of loop iterations to run before quitting (-1 to loop forever)")
    parser.add_argument("--wait", type=float,
                        help="Number of minutes to wait between loop iterations")
    parser.add_argument("--maxTasks", type=int,
                        help="Maximum number of running remote tasks to allow")
    parser.add_argument("--clear", action="store_true", default=False,
                        help="Erase prior binning results before beginning")
    parser.add_argument("--binOnly", action="store_true", default=False,
                        help="Perform binning only, skipping annotation and evaluation")
    parser.add_argument("-v", "--version", help="Print current version",
                        action="store_true")
    args = parser.parse_args(in_args)
    if args.version:
        print(version.__version__)
        sys.exit()
    if not args.config_file or not args.workflow:
        parser.error("Require a configuration file and workflow name.")
    return {"config_file": args.config_file,
            "workflow_name": args.workflow,
            "workdir": args.workdir,
            "overrides": _overrides(args)}

def _overrides(args):
    scheduler = {}
    if args.maxIter is not None:
        scheduler["max_iterations"] = args.maxIter
    if args.wait is not None:
        scheduler["poll_interval"] = args.wait * 60
    if args.maxTasks is not None:
        scheduler["max_concurrent_tasks"] = args.maxTasks
    out = {"scheduler": scheduler} if scheduler else {}
    binning = {k: True for k, v in [("clear", args.clear), ("bin_only", args.binOnly)] if v}
    if binning:
        out["binning"] = binning
    return out

if __name__ == "__main__":
    kwargs = parse_cl_args(sys.argv[1:])
    try:
        run_main(**kwargs)
    except ConfigurationFatal as e:
        sys.stderr.write("Run halted: %s\n" % e)
        sys.exit(1)

"""Loads configurations from .yaml files and expands environment variables.
"""
import copy
import os

import toolz as tz
import yaml

RETRY = "retry"
ABANDON = "abandon"
FAILURE_POLICIES = (RETRY, ABANDON)

DEFAULTS = {
    "log_dir": "log",
    "scheduler": {"max_concurrent_tasks": 10,
                  "poll_interval": 420,
                  "max_iterations": 100,
                  "max_submit_retries": None,
                  "max_poll_failures": None,
                  "artifact_size_limit": 200000000},
    "stages": {},
    "p3": {"task_limit": 1000},
    "resources": {},
}

# ## Retrieval functions

def load_config(config_file):
    """Load YAML config file, replacing environmental variables.

    Values missing from the file are filled in from the defaults.
    """
    with open(config_file) as in_handle:
        config = yaml.safe_load(in_handle) or {}
    return prepare_config(config)

def prepare_config(config):
    """Merge a configuration dictionary over the defaults, expanding paths.
    """
    config = merge_defaults(_expand_paths(copy.deepcopy(config)), DEFAULTS)
    validate(config)
    return config

def merge_defaults(config, defaults):
    out = copy.deepcopy(defaults)
    for k, v in config.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge_defaults(v, out[k])
        else:
            out[k] = v
    return out

def _expand_paths(config):
    for field, setting in config.items():
        if isinstance(config[field], dict):
            config[field] = _expand_paths(config[field])
        else:
            config[field] = expand_path(setting)
    return config

def expand_path(path):
    """ Combines os.path.expandvars with replacing ~ with $HOME.
    """
    try:
        return os.path.expandvars(path.replace("~", "$HOME"))
    except AttributeError:
        return path

def validate(config):
    """Check scheduler settings, raising ValueError on unusable values.
    """
    sched = config["scheduler"]
    if int(sched["max_concurrent_tasks"]) < 1:
        raise ValueError("Maximum number of tasks must be > 0: %s" % sched["max_concurrent_tasks"])
    if float(sched["poll_interval"]) < 0:
        raise ValueError("Invalid poll interval %s. Must be >= 0." % sched["poll_interval"])
    if sched.get("artifact_size_limit") is not None and int(sched["artifact_size_limit"]) < 5000000:
        raise ValueError("Artifact size limit must be at least 5000000 (5 million base pairs): %s"
                         % sched["artifact_size_limit"])
    limit = tz.get_in(["p3", "task_limit"], config)
    if limit is not None and int(limit) < 100:
        raise ValueError("Invalid task limit %s. The number should be enough to find all "
                         "running tasks, and must be >= 100." % limit)
    for name, policy in config.get("stages", {}).items():
        on_failure = (policy or {}).get("on_failure")
        if on_failure is not None and on_failure not in FAILURE_POLICIES:
            raise ValueError("Unexpected failure policy for stage %s: %s. Expected one of %s"
                             % (name, on_failure, ", ".join(FAILURE_POLICIES)))
    return config

def get_stage_policy(stage_name, config, default=None):
    """Retrieve failure handling for a stage, pulling from multiple config sources.

    Returns a dictionary with `on_failure` (retry or abandon) and `max_retries`
    (None for unlimited). Stage specific settings override the configured
    default which overrides the workflow supplied default.
    """
    out = {"on_failure": RETRY, "max_retries": None}
    for source in [default or {},
                   tz.get_in(["stages", "default"], config, {}) or {},
                   tz.get_in(["stages", stage_name], config, {}) or {}]:
        for key in ["on_failure", "max_retries"]:
            if key in source:
                out[key] = source[key]
    return out

def get_program(name, config, default=None):
    """Retrieve the command line for a program from the resources section.
    """
    return tz.get_in(["resources", name, "cmd"], config, default or name)

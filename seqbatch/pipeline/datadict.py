"""
functions to access the run configuration in a clearer way
"""
import toolz as tz

LOOKUPS = {
    "max_concurrent_tasks": {"keys": ["scheduler", "max_concurrent_tasks"], "default": 10},
    "poll_interval": {"keys": ["scheduler", "poll_interval"], "default": 420},
    "max_iterations": {"keys": ["scheduler", "max_iterations"], "default": 100},
    "max_submit_retries": {"keys": ["scheduler", "max_submit_retries"]},
    "max_poll_failures": {"keys": ["scheduler", "max_poll_failures"]},
    "artifact_size_limit": {"keys": ["scheduler", "artifact_size_limit"]},
    "workspace": {"keys": ["p3", "workspace"]},
    "task_limit": {"keys": ["p3", "task_limit"], "default": 1000},
    "tmp_dir": {"keys": ["resources", "tmp", "dir"]},
    "work_dir": {"keys": ["dirs", "work"]},
    "cores": {"keys": ["algorithm", "num_cores"], "default": 1},
}

def getter(keys, global_default=None):
    def lookup(config, default=None):
        default = global_default if default is None else default
        val = tz.get_in(keys, config)
        return default if val is None else val
    return lookup

def setter(keys):
    def update(config, value):
        return tz.update_in(config, keys, lambda x: value, default=value)
    return update

"""
generate the getter and setter functions but don't override any explicitly
defined
"""
_g = globals()
for k, v in LOOKUPS.items():
    keys = v['keys']
    getter_fn = 'get_' + k
    if getter_fn not in _g:
        _g["get_" + k] = getter(keys, v.get('default', None))
    setter_fn = 'set_' + k
    if setter_fn not in _g:
        _g["set_" + k] = setter(keys)

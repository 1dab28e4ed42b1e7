"""Filesystem helpers shared by the orchestrator, stores and workflows.
"""
import contextlib
import os
import shutil
import time


def safe_makedir(dname, tries=5):
    """Create a directory, tolerating other processes creating it at the same time.
    """
    if not dname:
        return dname
    for attempt in range(tries + 1):
        if os.path.isdir(dname):
            break
        try:
            os.makedirs(dname)
        except OSError:
            # shared filesystems can lag behind a concurrent mkdir
            if attempt == tries:
                raise
            time.sleep(2)
    return dname

@contextlib.contextmanager
def chdir(new_dir):
    """Run a block inside new_dir, creating it when needed.
    """
    orig_dir = os.getcwd()
    os.chdir(safe_makedir(new_dir))
    try:
        yield new_dir
    finally:
        os.chdir(orig_dir)

def file_exists(fname):
    """A phase output counts as written only when it is present and non-empty.
    """
    try:
        return bool(fname) and os.path.getsize(fname) > 0
    except OSError:
        return False

def get_size(path):
    """Bytes in a file, or in all files below a directory.
    """
    if not os.path.isdir(path):
        return os.path.getsize(path)
    total = 0
    for root, _, files in os.walk(path):
        total += sum(os.path.getsize(os.path.join(root, f)) for f in files)
    return total

def remove_safe(path):
    """Remove a file or directory tree, ignoring anything already gone.
    """
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path, ignore_errors=True)
    elif os.path.lexists(path):
        os.remove(path)

def which(program, env=None):
    """Full path of an executable, searched on PATH unless a path is given.
    """
    search = (env if env is not None else os.environ).get("PATH", "")
    if os.path.dirname(program):
        candidates = [program]
    else:
        candidates = [os.path.join(d, program) for d in search.split(os.pathsep)]
    for exe in candidates:
        if os.path.isfile(exe) and os.access(exe, os.X_OK):
            return exe
    return None

"""Handle file based transactions allowing safe restarts at any point.

Restart decisions are made from the existence of output files, so files
written by the orchestrator itself go to temporary locations first and are
moved to the final location only when complete.
"""
import contextlib
import os
import shutil
import tempfile

import toolz as tz

from seqbatch import utils


DEFAULT_TMP = 'seqbatchtx'


@contextlib.contextmanager
def tx_tmpdir(config=None, base_dir=None):
    """Context manager to create and remove a transactional temporary directory.

    Uses the configured temporary directory, falling back to a
    seqbatchtx directory inside base_dir or the current directory.
    """
    base_dir = base_dir or os.getcwd()
    tmpdir_base = os.path.abspath(os.path.expandvars(_get_base_tmpdir(config, base_dir)))
    utils.safe_makedir(tmpdir_base)
    tmp_dir = tempfile.mkdtemp(dir=tmpdir_base)
    try:
        yield tmp_dir
    finally:
        utils.remove_safe(tmp_dir)


def _get_base_tmpdir(config, fallback_base_dir):
    config_tmpdir = tz.get_in(("resources", "tmp", "dir"), config)
    return config_tmpdir or os.path.join(fallback_base_dir, DEFAULT_TMP)


@contextlib.contextmanager
def file_transaction(*config_and_files):
    """Wrap file generation in a transaction, moving to output if finishes.

    The initial argument can be the configuration dictionary, used to find
    the temporary directory to create transactional files in.
    """
    config, orig_names = _normalize_args(config_and_files)
    with tx_tmpdir(config) as tmpdir:
        safe_names = [os.path.join(tmpdir, os.path.basename(f)) for f in orig_names]
        if len(safe_names) == 1:
            yield safe_names[0]
        else:
            yield tuple(safe_names)
        for safe, orig in zip(safe_names, orig_names):
            if os.path.exists(safe):
                _move_tmp_file(safe, orig)


def _move_tmp_file(safe, orig):
    utils.safe_makedir(os.path.dirname(orig))
    # If we are rolling back a directory and it already exists
    # this will avoid making a nested set of directories
    if os.path.isdir(orig) and os.path.isdir(safe):
        utils.remove_safe(orig)
    want_size = utils.get_size(safe)
    shutil.move(safe, orig)
    transfer_size = utils.get_size(orig)
    assert want_size == transfer_size, (
        'File copy error: file or directory on temporary storage ({}) size {} bytes '
        'does not equal size after transfer to ({}) size {} bytes'.format(
            safe, want_size, orig, transfer_size))


def _normalize_args(config_and_files):
    if config_and_files and isinstance(config_and_files[0], dict):
        config, files = config_and_files[0], config_and_files[1:]
    elif config_and_files and config_and_files[0] is None:
        config, files = None, config_and_files[1:]
    else:
        config, files = None, config_and_files
    return config, [f for f in _flatten(files) if f]


def _flatten(iterable):
    for elem in iterable:
        if isinstance(elem, (tuple, list)):
            for i in elem:
                yield i
        else:
            yield elem

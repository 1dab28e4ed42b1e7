"""Centralize running of external commands, providing logging and tracking.
"""
import collections
import subprocess

from seqbatch import utils
from seqbatch.log import logger, logger_cl

# exit status reserved for a broken program environment, such as a bad PERL5LIB
ENVIRONMENT_EXIT = 2


def run(cmd, descr=None, job=None, checks=None, log_error=True, log_file=None, env=None):
    """Run the provided command, logging details and checking for errors.

    Non-zero exits raise subprocess.CalledProcessError with the exit code
    and the tail of the combined output.
    """
    if descr:
        descr = _descr_str(descr, job)
        logger.debug(descr)
    try:
        logger_cl.debug(" ".join(str(x) for x in cmd) if not isinstance(cmd, str) else cmd)
        _do_run(cmd, checks, log_file, env=env)
    except (subprocess.CalledProcessError, IOError) as e:
        if log_error:
            logger.error("Command failed: %s" % e)
        raise

def is_environment_error(exc):
    """Check if a failed command exited with the reserved environment code.
    """
    return isinstance(exc, subprocess.CalledProcessError) and exc.returncode == ENVIRONMENT_EXIT

def _descr_str(descr, job):
    """Add the job identifier to a description string.
    """
    if job is not None:
        descr = "{0} : {1}".format(descr, job.id)
    return descr

def find_cmd(cmd):
    try:
        return subprocess.check_output(["which", cmd]).decode().strip()
    except subprocess.CalledProcessError:
        return None

def _normalize_cmd_args(cmd):
    """Normalize subprocess arguments to handle list commands, string and pipes.
    """
    if isinstance(cmd, str):
        if cmd.find(" | ") > 0:
            return "set -o pipefail; " + cmd, True, find_cmd("bash")
        else:
            return cmd, True, None
    else:
        return [str(x) for x in cmd], False, None

def _do_run(cmd, checks, log_file=None, env=None):
    """Perform running and check results, raising errors for issues.
    """
    cmd, shell_arg, executable_arg = _normalize_cmd_args(cmd)
    s = subprocess.Popen(
        cmd,
        shell=shell_arg,
        executable=executable_arg,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        close_fds=True,
        env=env,
    )
    out_handle = open(log_file, "w") if log_file else None
    debug_stdout = collections.deque(maxlen=100)
    try:
        for raw in iter(s.stdout.readline, b""):
            line = raw.decode("utf-8", errors="replace")
            debug_stdout.append(line)
            if out_handle:
                out_handle.write(line)
            elif line.rstrip():
                logger.debug(line.rstrip())
        exitcode = s.wait()
    finally:
        s.stdout.close()
        if out_handle:
            out_handle.close()
    if exitcode != 0:
        error_msg = " ".join(cmd) if not isinstance(cmd, str) else cmd
        error_msg += "\n"
        error_msg += "".join(debug_stdout)
        raise subprocess.CalledProcessError(exitcode, error_msg)
    # Check for problems not identified by shell return codes
    if checks:
        for check in checks:
            if not check():
                raise IOError("External command failed")

def file_nonempty(target_file):
    """Check run after a program exits cleanly, requiring its output to have content.
    """
    def check():
        if utils.file_exists(target_file):
            return True
        logger.warn("Program finished without writing %s." % target_file)
        return False
    return check

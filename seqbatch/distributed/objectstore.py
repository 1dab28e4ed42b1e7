"""Check for pipeline artifacts in local directories or remote workspaces.

Artifact existence is the only record of completed phases, so stores answer
existence, size and listing questions for the restart scanner and for
confirming synchronous phases.
"""
import collections
import os

from seqbatch import utils
from seqbatch.distributed import p3
from seqbatch.errors import ConfigurationFatal, TransientRemoteError
from seqbatch.log import logger

FOLDER = "folder"
JOB_RESULT = "job_result"
READS = "reads"
TEXT = "text"
OTHER = "other"

DirEntry = collections.namedtuple("DirEntry", ["name", "type"])

# written into a job result folder when the remote task failed
FAILED_MARKER = "JobFailed.txt"

READ_EXTS = (".fastq", ".fq", ".fastq.gz", ".fq.gz")
TEXT_EXTS = (".txt", ".tbl", ".html", ".fpkm", ".fpkm_tracking", ".json", ".tsv")


def _guess_type(name):
    if name.endswith(READ_EXTS):
        return READS
    elif name.endswith(TEXT_EXTS):
        return TEXT
    return OTHER

class LocalStore(object):
    """Artifacts as files and directories on a local or shared filesystem.
    """
    def exists(self, path, is_dir=False):
        """Check for an artifact, failing if it is present but unusable.

        A path that exists with the wrong type, or a file we cannot read,
        means the sample directory is damaged and is a ConfigurationFatal.
        """
        if not os.path.exists(path):
            return False
        if is_dir:
            if not os.path.isdir(path):
                raise ConfigurationFatal("Result directory %s is not a directory." % path)
        elif not os.path.isfile(path) or not os.access(path, os.R_OK):
            raise ConfigurationFatal("Result file %s is not readable." % path)
        return True

    def size(self, path):
        return utils.get_size(path) if os.path.exists(path) else None

    def listdir(self, path):
        if not os.path.isdir(path):
            return []
        out = []
        for name in sorted(os.listdir(path)):
            full = os.path.join(path, name)
            out.append(DirEntry(name, FOLDER if os.path.isdir(full) else _guess_type(name)))
        return out

    def makedir(self, path):
        return utils.safe_makedir(path)

class WorkspaceStore(object):
    """Artifacts inside a remote workspace, examined with p3-ls.

    Listings include hidden entries, since job results keep their files in a
    hidden folder named after the result. Listing lines hold the entry type
    followed by the name, tab separated.
    """
    TYPES = {"folder": FOLDER, "job_result": JOB_RESULT, "reads": READS,
             "txt": TEXT, "html": TEXT, "unspecified": TEXT, "diffexp_input_data": TEXT}

    def listdir(self, path):
        try:
            info = p3.check_output(["p3-ls", "-a", "-T", path])
        except TransientRemoteError as e:
            if "not found" in str(e).lower() or "does not exist" in str(e).lower():
                return []
            raise
        out = []
        for parts in (l.split("\t") for l in info.split("\n") if l.strip()):
            if len(parts) >= 2:
                ftype, name = parts[0].strip(), parts[-1].strip()
                out.append(DirEntry(name, self.TYPES.get(ftype.lower(), OTHER)))
        return out

    def exists(self, path, is_dir=False):
        parent, name = path.rstrip("/").rsplit("/", 1)
        for entry in self.listdir(parent):
            if entry.name == name:
                return entry.type in (FOLDER, JOB_RESULT) if is_dir else True
        return False

    def size(self, path):
        return None

    def makedir(self, path):
        p3.check_output(["p3-mkdir", path])
        return path

def job_result_ok(store, result):
    """Check for a remote job result that finished without failure data.

    The files of a result live in a hidden folder next to it, named with a
    leading dot.
    """
    if not store.exists(result, is_dir=True):
        return False
    parent, name = result.rstrip("/").rsplit("/", 1)
    folder = "%s/.%s" % (parent, name)
    if any(x.name == FAILED_MARKER for x in store.listdir(folder)):
        logger.warn("Job result %s contains failure data." % result)
        return False
    return True

"""Process a folder of paired RNA-seq reads with the remote application service.

Each sample passes through three phases:

1. trim: trim the paired FASTQ reads (remote). Produces the job result
   `<sample>_fq` in the output folder.
2. align: align the trimmed reads to the sample's base genome with the
   RNA-Rocket recipe (remote). Produces `<sample>_rna`.
3. copy: copy the SAMSTAT report and FPKM tracking file from the alignment
   result into the FPKM folder (local p3-cp calls). Produces
   `FPKM/<sample>_genes.fpkm`.

Input and output folders are workspace paths, not local files.
"""
import csv
import re

import toolz as tz

from seqbatch.errors import ConfigurationFatal, StageFailure
from seqbatch.log import logger
from seqbatch.distributed import objectstore
from seqbatch.pipeline import config_utils, stages
from seqbatch.provenance import do

FPKM_DIR = "FPKM"
FPKM_FILE_NAME = "Tuxedo_0_replicate1_genes.fpkm_tracking"
SUFFIXES = {"trim": "_fq", "align": "_rna", "copy": "_genes.fpkm"}
DEFAULT_READ_PATTERN = r"(.+)_(R[12])_001\.fastq"
DEFAULT_LEFT_ID = "R1"

def _get(config, key, default=None):
    return tz.get_in(["rnaseq", key], config, default)

def output_name(job, stage):
    return job.id + SUFFIXES.get(stage.name, "")

def job_folder(job, stage_name, config):
    """Hidden workspace folder holding the files of a phase's job result.
    """
    return "%s/.%s%s" % (_get(config, "out_dir"), job.id, SUFFIXES[stage_name])

def samstat_name(name):
    return "Tuxedo_0_replicate1_%s_R1_001_ptrim.fq_%s_R2_001_ptrim.fq.bam.samstat.html" % (name, name)

def pair_list(left_file, right_file):
    return [{"read1": left_file, "read2": right_file}]

# ## Samples

def read_genome_map(genome_file):
    """Read the tab-delimited table of job name patterns to base genome ids.

    Patterns are kept in file order; the first full match wins.
    """
    try:
        with open(genome_file) as in_handle:
            reader = csv.DictReader(in_handle, delimiter="\t")
            if not reader.fieldnames or not {"pattern", "genome_id"} <= set(reader.fieldnames):
                raise ConfigurationFatal("Base-genome file %s needs pattern and genome_id columns."
                                         % genome_file)
            out = [(re.compile(r["pattern"]), r["genome_id"]) for r in reader]
    except (IOError, OSError, TypeError):
        raise ConfigurationFatal("Base-genome file %s not found or unreadable." % genome_file)
    logger.info("%s base-genome patterns saved." % len(out))
    return out

def compute_genome(name, genome_map):
    for pattern, genome_id in genome_map:
        if pattern.fullmatch(name):
            return genome_id
    raise ConfigurationFatal("No genome ID match found for job %s." % name)

def enumerate_samples(config, local, workspace):
    """Pair up read files in the input folder into samples.

    Samples missing either the left or right read file are dropped.
    """
    in_dir = _get(config, "in_dir")
    if not in_dir or not _get(config, "out_dir"):
        raise ConfigurationFatal("RNA-seq processing needs rnaseq in_dir and out_dir settings.")
    read_pattern = re.compile(_get(config, "read_pattern", DEFAULT_READ_PATTERN))
    left_id = _get(config, "left_id", DEFAULT_LEFT_ID)
    genome_map = read_genome_map(_get(config, "genome_map"))
    logger.info("Scanning input directory %s." % in_dir)
    pairs = {}
    for entry in workspace.listdir(in_dir):
        if entry.type != objectstore.READS:
            continue
        m = read_pattern.fullmatch(entry.name)
        if m:
            side = "left" if m.group(2) == left_id else "right"
            pairs.setdefault(m.group(1), {})[side] = "%s/%s" % (in_dir, entry.name)
    logger.info("%s jobs found in input directory." % len(pairs))
    out = []
    for name in sorted(pairs):
        reads = pairs[name]
        if "left" in reads and "right" in reads:
            out.append((name, {"left": reads["left"], "right": reads["right"],
                               "genome_id": compute_genome(name, genome_map)}))
    logger.info("%s jobs remaining after incomplete file pairs removed." % len(out))
    return out

# ## Phases

def _result_done(workspace, config, stage_name):
    """A job result counts as done unless its folder holds failure data.
    """
    out_dir = _get(config, "out_dir")
    def is_done(job):
        return objectstore.job_result_ok(workspace, "%s/%s%s" % (out_dir, job.id, SUFFIXES[stage_name]))
    return is_done

def _trim(service, config):
    def submit(job):
        params = {"paired_end_libs": pair_list(job.attrs["left"], job.attrs["right"]),
                  "single_end_libs": [],
                  "recipe": ["trim"],
                  "output_path": _get(config, "out_dir"),
                  "output_file": job.id + SUFFIXES["trim"]}
        return service.submit("FastqUtils", params)
    return submit

def _align(service, workspace, config):
    def submit(job):
        trim_dir = job_folder(job, "trim", config)
        reads = ["%s/%s" % (trim_dir, x.name) for x in workspace.listdir(trim_dir)
                 if x.type == objectstore.READS]
        if len(reads) != 2:
            raise StageFailure("Expected 2 trimmed FASTQ files in %s, found %s." % (trim_dir, len(reads)))
        params = {"single_end_libs": [],
                  "paired_end_libs": pair_list(reads[0], reads[1]),
                  "output_path": _get(config, "out_dir"),
                  "output_file": job.id + SUFFIXES["align"],
                  "reference_genome_id": job.attrs["genome_id"],
                  "recipe": "RNA-Rocket",
                  "strand_specific": "1"}
        return service.submit("RNASeq", params)
    return submit

def fpkm_file(job, config):
    return "%s/%s/%s%s" % (_get(config, "out_dir"), FPKM_DIR, job.id, SUFFIXES["copy"])

def _copy(config):
    cp = config_utils.get_program("p3-cp", config)
    def submit(job):
        align_dir = job_folder(job, "align", config)
        copies = [("%s/%s" % (align_dir, samstat_name(job.id)),
                   "%s/%s/%s.samstat.html" % (_get(config, "out_dir"), FPKM_DIR, job.id)),
                  ("%s/%s" % (align_dir, FPKM_FILE_NAME), fpkm_file(job, config))]
        for source, target in copies:
            logger.info("Copying remote file %s to %s." % (source, target))
            do.run([cp, "ws:" + source, "ws:" + target], "Copy FPKM results", job)
    return submit

def build_catalog(config, local, workspace, service):
    catalog = stages.StageCatalog()
    catalog.add("trim", stages.ASYNC_REMOTE, _result_done(workspace, config, "trim"),
                _trim(service, config))
    catalog.add("align", stages.ASYNC_REMOTE, _result_done(workspace, config, "align"),
                _align(service, workspace, config))
    catalog.add("copy", stages.SYNC_LOCAL, lambda job: workspace.exists(fpkm_file(job, config)),
                _copy(config))
    catalog.close()
    return catalog

def prepare(config, local, workspace, registry):
    """Make sure the FPKM folder is available for the copy phase.
    """
    out_dir = _get(config, "out_dir")
    if not workspace.exists("%s/%s" % (out_dir, FPKM_DIR), is_dir=True):
        logger.info("Creating FPKM output directory.")
        workspace.makedir("%s/%s" % (out_dir, FPKM_DIR))

def finalize(config, local, registry):
    return None

"""Run a directory of assembled metagenome samples through binning.

Each sample directory holds `contigs.fasta` and passes through:

1. coverage: `bins_coverage` computes contig coverage, creating
   `output.contigs2reads.txt`.
2. generate: `bins_generate` groups contigs into bins, ending with
   `bins.json`.
3. annotate: one remote annotation request covers all bins of the sample.
4. fetch: the annotated `bin.N.TAXON.gto` files are copied back.
5. evaluate: the bin evaluator writes `Eval/index.html`.
6. vbins: `vbins_generate` finds virus bins, writing `vbins.html`. Only
   run when a CheckV database is configured.

Every phase is skipped when its output file already exists, so a sample
directory can be restarted at any point.
"""
import json
import os
import subprocess

import toolz as tz
from Bio import SeqIO

from seqbatch import utils
from seqbatch.errors import ConfigurationFatal, SkippedByPolicy, TransientRemoteError
from seqbatch.log import logger
from seqbatch.distributed import objectstore
from seqbatch.distributed.transaction import file_transaction
from seqbatch.pipeline import config_utils, stages
from seqbatch.pipeline import datadict as dd
from seqbatch.provenance import do
from seqbatch.qc import binquality

CONTIGS = "contigs.fasta"
KEEP_NAMES = frozenset(["contigs.fasta", "site.tbl", "exclude.tbl", "bin.parms"])
ANNO_SUFFIX = "_anno"

def _get(config, key, default=None):
    return tz.get_in(["binning", key], config, default)

def sample_dir(job):
    return job.attrs["sample_dir"]

def sample_file(job, *parts):
    return os.path.join(sample_dir(job), *parts)

def sample_space(job, config):
    return "%s/%s" % (dd.get_workspace(config), job.id)

def output_name(job, stage):
    return job.id + ANNO_SUFFIX

# ## Samples

def is_sample_dir(dname):
    return os.path.isdir(dname) and os.access(os.path.join(dname, CONTIGS), os.R_OK)

def enumerate_samples(config, local, workspace):
    samples_dir = _get(config, "samples_dir")
    if not samples_dir or not os.path.isdir(samples_dir):
        raise ConfigurationFatal("Samples directory %s is not found or invalid." % samples_dir)
    dirs = sorted(os.path.join(samples_dir, x) for x in os.listdir(samples_dir))
    out = [(os.path.basename(d), {"sample_dir": os.path.abspath(d)}) for d in dirs if is_sample_dir(d)]
    if not out:
        raise ConfigurationFatal("No samples found in %s." % samples_dir)
    logger.info("%s sample directories found in %s." % (len(out), samples_dir))
    return out

def fix_parm(parm):
    """Split a key=value override into separate command line arguments.
    """
    keyword, sep, value = parm.partition("=")
    if not sep or not keyword:
        return [parm]
    return [keyword, value]

def parse_parm_file(parm_file):
    """Read binning overrides, one per line, into command line arguments.
    """
    try:
        with open(parm_file) as in_handle:
            parms = [x.strip() for x in in_handle if x.strip()]
    except (IOError, OSError):
        raise ConfigurationFatal("Binning parameter override file %s is not found or unreadable."
                                 % parm_file)
    out = []
    for parm in parms:
        out.extend(fix_parm(parm))
    return out

def bin_overrides(job, config):
    """Sample specific bin.parms take precedence over the configured overrides.
    """
    local_parms = sample_file(job, "bin.parms")
    if os.path.exists(local_parms):
        return parse_parm_file(local_parms)
    elif _get(config, "bin_parms"):
        return parse_parm_file(_get(config, "bin_parms"))
    return []

def clear_results(dname):
    """Remove prior results from a sample directory, keeping the inputs.
    """
    count = 0
    for fname in os.listdir(dname):
        if fname not in KEEP_NAMES:
            utils.remove_safe(os.path.join(dname, fname))
            count += 1
    logger.info("%s files and subdirectories deleted from %s." % (count, dname))
    return count

# ## Bins

def read_bins(bin_file):
    """Read bin descriptions from bins.json, where records are separated by `//` lines.

    A damaged bin file raises ConfigurationFatal.
    """
    bins = []
    buf = []
    with open(bin_file) as in_handle:
        for line in in_handle:
            if line.strip() == "//":
                try:
                    data = json.loads("".join(buf))
                except ValueError as e:
                    raise ConfigurationFatal("Invalid bin %s in %s: %s" % (len(bins) + 1, bin_file, e))
                bins.append(_parse_bin(data, len(bins) + 1))
                buf = []
            else:
                buf.append(line)
    return bins

def _parse_bin(data, num):
    contigs = data.get("contigs", [])
    length = sum(int(c[1]) for c in contigs)
    coverage = sum(float(c[2]) * int(c[1]) for c in contigs) / length if length else 0.0
    refs = data.get("refGenomes", [])
    taxon = int(data.get("taxonID", 2))
    if not refs:
        raise ConfigurationFatal("Reference genomes missing from bin %s with taxon %s." % (num, taxon))
    return {"num": num, "taxon_id": taxon, "name": data.get("name", "unknown bin genome"),
            "domain": data.get("domain", "Bacteria"), "gc": int(data.get("gc", 11)),
            "ref_genomes": refs, "contigs": [c[0] for c in contigs],
            "length": length, "coverage": coverage}

def bin_base(b):
    return "bin.%s.%s" % (b["num"], b["taxon_id"])

def job_bins(job):
    bin_file = sample_file(job, "bins.json")
    return read_bins(bin_file) if os.path.exists(bin_file) else []

def unannotated(job):
    return [b for b in job_bins(job) if not os.path.exists(sample_file(job, bin_base(b) + ".gto"))]

def write_bin_fastas(job, bins):
    """Place the binned contigs into one FASTA file per bin.
    """
    by_contig = {}
    for b in bins:
        for contig in b["contigs"]:
            by_contig[contig] = bin_base(b)
    records = {bin_base(b): [] for b in bins}
    skipped = 0
    with open(sample_file(job, CONTIGS)) as in_handle:
        for rec in SeqIO.parse(in_handle, "fasta"):
            if rec.id in by_contig:
                records[by_contig[rec.id]].append(rec)
            else:
                skipped += 1
    out = []
    for base, recs in records.items():
        fasta = sample_file(job, base + ".fa")
        with file_transaction(fasta) as tx_fasta:
            with open(tx_fasta, "w") as out_handle:
                SeqIO.write(recs, out_handle, "fasta")
        out.append(fasta)
    logger.info("%s contigs binned and %s skipped for %s." % (len(by_contig), skipped, job.id))
    return out

# ## Phases

def _perl(config):
    """Build a runner for the binning perl scripts, validating the installation.
    """
    bin_path = _get(config, "bin_path") or os.environ.get("BIN_PATH") or os.getcwd()
    if not os.access(os.path.join(bin_path, "bins_generate.pl"), os.R_OK):
        raise ConfigurationFatal("Binning-command path %s does not contain the binning command."
                                 % bin_path)
    perl = utils.which(config_utils.get_program("perl", config))
    if not perl:
        raise ConfigurationFatal("Cannot find a usable PERL executable in the path.")
    logger.info("Binning command path is %s, perl is %s." % (bin_path, perl))
    def run(job, name, args, out_file):
        script = os.path.join(bin_path, name + ".pl")
        if not os.access(script, os.R_OK):
            raise ConfigurationFatal("Cannot read script file %s." % script)
        do.run([perl, script] + list(args), "Running %s" % name, job,
               checks=[do.file_nonempty(out_file)], log_file=sample_file(job, name + ".log"))
    return run

def _exists(local, *parts):
    def is_done(job):
        return local.exists(sample_file(job, *parts))
    return is_done

def _coverage(perl):
    def submit(job):
        logger.info("Creating coverage file for %s." % job.id)
        perl(job, "bins_coverage", [sample_file(job, CONTIGS), sample_dir(job)],
             sample_file(job, "output.contigs2reads.txt"))
    return submit

def _generate(perl, config):
    def submit(job):
        logger.info("Generating bins for %s." % job.id)
        args = bin_overrides(job, config) + ["--statistics-file", sample_file(job, "bins.stats.txt"),
                                             sample_dir(job)]
        perl(job, "bins_generate", args, sample_file(job, "bins.json"))
    return submit

def _annotation_skip(config):
    """Skip annotation work when it is suppressed or there is nothing to annotate.
    """
    def skip(job):
        if _get(config, "bin_only"):
            raise SkippedByPolicy("annotation suppressed for binning-only run")
        if not job_bins(job):
            raise SkippedByPolicy("no bins found")
    return skip

def _after_annotation_skip(config):
    """Phases that need annotated bins follow the annotation skip decisions.
    """
    annotation_skip = _annotation_skip(config)
    def skip(job):
        annotation_skip(job)
        limit = dd.get_artifact_size_limit(config)
        size = largest_bin(job)
        if limit and size > int(limit):
            raise SkippedByPolicy("annotation skipped for bin of size %s" % size)
    return skip

def largest_bin(job):
    return max([b["length"] for b in job_bins(job)] or [0])

def _annotated(workspace, config):
    """Annotation is done when every bin has a local GTO or the remote result succeeded.

    Runs without annotation never reach the workspace.
    """
    def is_done(job):
        bins = job_bins(job)
        if bins and not unannotated(job):
            return True
        if _get(config, "bin_only") or not dd.get_workspace(config):
            return False
        return objectstore.job_result_ok(workspace, "%s/%s" % (sample_space(job, config),
                                                              output_name(job, None)))
    return is_done

def _annotate(service, config):
    cp = config_utils.get_program("p3-cp", config)
    def submit(job):
        bins = unannotated(job)
        space = sample_space(job, config)
        logger.info("Submitting annotation request for %s bins of %s." % (len(bins), job.id))
        fastas = write_bin_fastas(job, bins)
        request = []
        for b, fasta in zip(bins, fastas):
            remote = "%s/%s" % (space, os.path.basename(fasta))
            try:
                do.run([cp, "-f", fasta, "ws:" + remote], "Upload bin FASTA", job)
            except (subprocess.CalledProcessError, IOError) as e:
                raise TransientRemoteError("Upload of %s failed: %s" % (fasta, e))
            request.append({"contigs": remote, "taxonomy_id": b["taxon_id"],
                            "scientific_name": b["name"], "domain": b["domain"],
                            "code": b["gc"], "reference_genome_id": b["ref_genomes"][0],
                            "output_file": bin_base(b)})
        params = {"output_path": space, "output_file": output_name(job, None), "bins": request}
        return service.submit("AnnotateBins", params)
    return submit

def _fetch(config):
    cp = config_utils.get_program("p3-cp", config)
    def submit(job):
        folder = "%s/.%s" % (sample_space(job, config), output_name(job, None))
        for b in unannotated(job):
            gto = bin_base(b) + ".gto"
            logger.info("Copying annotated bin %s for %s." % (gto, job.id))
            do.run([cp, "ws:%s/%s" % (folder, gto), sample_file(job, gto)], "Fetch GTO", job)
    return submit

def _evaluate(config):
    cmd = config_utils.get_program("bins_evaluate", config)
    model_dir = _get(config, "model_dir")
    def submit(job):
        eval_dir = sample_file(job, "Eval")
        # all bins are evaluated together, so start from an empty directory
        utils.remove_safe(eval_dir)
        utils.safe_makedir(eval_dir)
        logger.info("Evaluating the bins for %s." % job.id)
        do.run([cmd, model_dir, sample_dir(job), eval_dir], "Evaluate bins", job)
    return submit

def _virus_skip(config):
    def skip(job):
        if not _get(config, "virus_db"):
            raise SkippedByPolicy("virus binning not configured")
    return skip

def _vbins(perl, config):
    def submit(job):
        perl(job, "vbins_generate", [_get(config, "virus_db"), sample_dir(job)],
             sample_file(job, "vbins.html"))
    return submit

def build_catalog(config, local, workspace, service):
    perl = _perl(config)
    virus_db = _get(config, "virus_db")
    if virus_db and not os.path.isdir(virus_db):
        raise ConfigurationFatal("Virus binning database %s is not found or invalid." % virus_db)
    catalog = stages.StageCatalog()
    catalog.add("coverage", stages.SYNC_LOCAL, _exists(local, "output.contigs2reads.txt"),
                _coverage(perl))
    catalog.add("generate", stages.SYNC_LOCAL, _exists(local, "bins.json"), _generate(perl, config))
    catalog.add("annotate", stages.ASYNC_REMOTE, _annotated(workspace, config),
                _annotate(service, config), size_of=largest_bin, skip=_annotation_skip(config),
                policy={"on_failure": config_utils.ABANDON})
    catalog.add("fetch", stages.SYNC_LOCAL, lambda job: bool(job_bins(job)) and not unannotated(job),
                _fetch(config), skip=_after_annotation_skip(config))
    catalog.add("evaluate", stages.SYNC_LOCAL, _exists(local, "Eval", "index.html"),
                _evaluate(config), skip=_after_annotation_skip(config))
    catalog.add("vbins", stages.SYNC_LOCAL, _exists(local, "vbins.html"), _vbins(perl, config),
                skip=_virus_skip(config))
    catalog.close()
    return catalog

def prepare(config, local, workspace, registry):
    """Clear old results if requested and make the per-sample workspace folders.
    """
    model_dir = _get(config, "model_dir")
    if not _get(config, "bin_only") and not os.access(os.path.join(model_dir or "", "roles.to.use"), os.R_OK):
        raise ConfigurationFatal("%s does not appear to be a valid model directory." % model_dir)
    if _get(config, "clear"):
        logger.info("Erasing old results.")
        for job in registry.jobs():
            clear_results(sample_dir(job))
    if not _get(config, "bin_only"):
        if not dd.get_workspace(config):
            raise ConfigurationFatal("Annotation needs a p3 workspace setting.")
        existing = set(x.name for x in workspace.listdir(dd.get_workspace(config)))
        for job in registry.jobs():
            if job.id not in existing:
                logger.info("Creating workspace folder %s." % sample_space(job, config))
                workspace.makedir(sample_space(job, config))

def finalize(config, local, registry):
    """Summarize bin quality across all samples into quality.tbl.
    """
    if _get(config, "bin_only"):
        return None
    out_file = os.path.join(_get(config, "samples_dir"), "quality.tbl")
    dirs = [sample_dir(j) for j in registry.jobs()]
    return binquality.summarize(dirs, out_file, cores=dd.get_cores(config), config=config)

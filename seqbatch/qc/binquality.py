"""Summarize quality of annotated bins across binning samples.

Quality flags come from the `quality` section of each annotated bin GTO:
bins that are not mostly good are bad, mostly good bins with an SSU rRNA are
good, the rest are mostly good.
"""
import collections
import functools
import glob
import json
import os

from seqbatch.log import logger
from seqbatch.distributed import multi
from seqbatch.distributed.transaction import file_transaction

GOOD = "good"
MOSTLY = "mostly_good"
BAD = "bad"
CATEGORIES = (GOOD, MOSTLY, BAD)


def classify(quality):
    if not quality.get("mostly_good", False):
        return BAD
    elif quality.get("has_ssu_rna", False):
        return GOOD
    return MOSTLY

def sample_quality(sample_dir):
    """Count bin quality categories for one sample directory.
    """
    counts = collections.Counter({k: 0 for k in CATEGORIES})
    gtos = sorted(glob.glob(os.path.join(sample_dir, "bin.*.gto")))
    for gto_file in gtos:
        with open(gto_file) as in_handle:
            gto = json.load(in_handle)
        counts[classify(gto.get("quality", {}))] += 1
    logger.info("%s bin results found in %s." % (len(gtos), sample_dir))
    return os.path.basename(sample_dir), counts

def _combine(totals, result):
    _, counts = result
    totals.update(counts)
    return totals

def summarize(sample_dirs, out_file, cores=1, config=None):
    """Write per-sample and total bin quality counts to a tab-delimited table.

    Samples are scored in parallel; totals are merged after all samples finish.
    """
    results = multi.run_multicore(sample_quality, [[d] for d in sample_dirs], cores)
    totals = functools.reduce(_combine, results, collections.Counter({k: 0 for k in CATEGORIES}))
    with file_transaction(config, out_file) as tx_out_file:
        with open(tx_out_file, "w") as out_handle:
            out_handle.write("Sample\tgood_bins\tmostly_good_bins\tbad_bins\ttotal\n")
            for name, counts in results:
                out_handle.write(_row(name, counts))
            out_handle.write("\n")
            out_handle.write(_row("TOTAL", totals))
    logger.info("Bin quality summary written to %s." % out_file)
    return totals

def _row(name, counts):
    total = sum(counts[k] for k in CATEGORIES)
    return "%s\t%d\t%d\t%d\t%d\n" % (name, counts[GOOD], counts[MOSTLY], counts[BAD], total)

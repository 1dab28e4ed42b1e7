"""Run local batch work in parallel on a single machine using multiple cores.

Each unit of work accumulates its own result; results are merged in a
single reduction step after the parallel map, so no shared counters are
updated concurrently.
"""
import joblib

from seqbatch.log import logger


def run_multicore(fn, items, cores=1):
    """Run the function using multiple cores on the given items to process.
    """
    items = [x for x in items if x is not None]
    if len(items) == 0:
        return []
    cores = max(1, min(int(cores), len(items)))
    logger.debug("Running %s on %s items with %s cores." % (fn.__name__, len(items), cores))
    if cores == 1:
        return [fn(*x) for x in items]
    return list(joblib.Parallel(cores, batch_size=1, backend="threading")(joblib.delayed(fn)(*x) for x in items))

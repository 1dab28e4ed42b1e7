"""Sample workflows: how samples are found and which phases they go through.

Each workflow module provides:

- enumerate_samples(config, local, workspace) -> [(sample id, attributes)]
- build_catalog(config, local, workspace, service) -> StageCatalog
- prepare(config, local, workspace, registry), run before the restart scan
- output_name(job, stage), the remote output a phase task produces
- finalize(config, local, registry), run after the scheduler finishes
"""
from seqbatch.workflow import binning, rnaseq

WORKFLOWS = {"rnaseq": rnaseq, "binning": binning}

def get_workflow(name):
    try:
        return WORKFLOWS[name]
    except KeyError:
        raise ValueError("Unexpected workflow %s. Expected one of: %s"
                         % (name, ", ".join(sorted(WORKFLOWS))))

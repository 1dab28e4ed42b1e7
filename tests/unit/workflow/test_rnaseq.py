import pytest

from seqbatch.distributed import objectstore
from seqbatch.errors import ConfigurationFatal, StageFailure
from seqbatch.pipeline import job
from seqbatch.workflow import rnaseq

READS = objectstore.READS
OUT = "/user@patricbrc.org/home/rna/out"
IN = "/user@patricbrc.org/home/rna/in"


class Workspace(objectstore.WorkspaceStore):
    """Workspace listings held in memory."""
    def __init__(self, tree=None):
        self.tree = tree or {}
        self.made = []

    def listdir(self, path):
        return self.tree.get(path, [])

    def makedir(self, path):
        self.made.append(path)
        return path


def _entries(*pairs):
    return [objectstore.DirEntry(name, ftype) for name, ftype in pairs]


@pytest.fixture
def rna_config(config, tmpdir):
    genome_file = tmpdir.join("genomes.tbl")
    genome_file.write("pattern\tgenome_id\nEC.*\t83333.1\n.*\t511145.12\n")
    config["rnaseq"] = {"in_dir": IN, "out_dir": OUT, "genome_map": str(genome_file)}
    return config


@pytest.fixture
def sample():
    return job.Job("EC01", 3, {"left": IN + "/EC01_R1_001.fastq", "right": IN + "/EC01_R2_001.fastq",
                               "genome_id": "83333.1"})


def test_enumerate_samples(rna_config):
    workspace = Workspace({IN: _entries(("EC01_R1_001.fastq", READS), ("EC01_R2_001.fastq", READS),
                                        ("PA02_R2_001.fastq", READS), ("PA02_R1_001.fastq", READS),
                                        ("XX03_R1_001.fastq", READS),
                                        ("notes.txt", objectstore.TEXT))})
    samples = rnaseq.enumerate_samples(rna_config, None, workspace)
    assert [s[0] for s in samples] == ["EC01", "PA02"]
    assert samples[0][1] == {"left": IN + "/EC01_R1_001.fastq", "right": IN + "/EC01_R2_001.fastq",
                             "genome_id": "83333.1"}
    assert samples[1][1]["genome_id"] == "511145.12"
    assert samples[1][1]["left"] == IN + "/PA02_R1_001.fastq"


def test_enumerate_requires_folders(config):
    config["rnaseq"] = {"in_dir": IN}
    with pytest.raises(ConfigurationFatal):
        rnaseq.enumerate_samples(config, None, Workspace())


def test_genome_map_errors(tmpdir):
    with pytest.raises(ConfigurationFatal):
        rnaseq.read_genome_map(str(tmpdir.join("missing.tbl")))
    bad = tmpdir.join("bad.tbl")
    bad.write("name\tgenome\nEC.*\t83333.1\n")
    with pytest.raises(ConfigurationFatal):
        rnaseq.read_genome_map(str(bad))


def test_compute_genome_first_match(tmpdir):
    genome_file = tmpdir.join("genomes.tbl")
    genome_file.write("pattern\tgenome_id\nEC0[12]\t83333.1\nEC.*\t562.1\n")
    genome_map = rnaseq.read_genome_map(str(genome_file))
    assert rnaseq.compute_genome("EC01", genome_map) == "83333.1"
    assert rnaseq.compute_genome("EC03", genome_map) == "562.1"
    with pytest.raises(ConfigurationFatal):
        rnaseq.compute_genome("PA01", genome_map)
    with pytest.raises(ConfigurationFatal):
        rnaseq.compute_genome("xEC01", genome_map)


def test_result_done(rna_config, sample, mocker):
    workspace = Workspace({OUT: _entries(("EC01_fq", objectstore.JOB_RESULT),
                                         ("EC01_rna", objectstore.JOB_RESULT)),
                           OUT + "/.EC01_rna": _entries((objectstore.FAILED_MARKER, objectstore.TEXT))})
    catalog = rnaseq.build_catalog(rna_config, None, workspace, mocker.Mock())
    assert catalog.names() == ["trim", "align", "copy", "done"]
    assert catalog.by_name("trim").is_done(sample)
    assert not catalog.by_name("align").is_done(sample)
    assert not catalog.by_name("copy").is_done(sample)


def test_trim_and_align_requests(rna_config, sample, mocker):
    service = mocker.Mock()
    service.submit.return_value = "1001"
    workspace = Workspace({OUT + "/.EC01_fq": _entries(("EC01_R1_001_ptrim.fq", READS),
                                                       ("EC01_R2_001_ptrim.fq", READS),
                                                       ("fqutil.log", objectstore.TEXT))})
    catalog = rnaseq.build_catalog(rna_config, None, workspace, service)
    assert catalog.by_name("trim").submit(sample) == "1001"
    app, params = service.submit.call_args[0]
    assert app == "FastqUtils"
    assert params["output_file"] == "EC01_fq"
    assert params["paired_end_libs"] == [{"read1": sample.attrs["left"], "read2": sample.attrs["right"]}]
    catalog.by_name("align").submit(sample)
    app, params = service.submit.call_args[0]
    assert app == "RNASeq"
    assert params["reference_genome_id"] == "83333.1"
    assert params["output_path"] == OUT
    assert params["paired_end_libs"] == [{"read1": OUT + "/.EC01_fq/EC01_R1_001_ptrim.fq",
                                          "read2": OUT + "/.EC01_fq/EC01_R2_001_ptrim.fq"}]


def test_align_needs_trimmed_pair(rna_config, sample, mocker):
    workspace = Workspace({OUT + "/.EC01_fq": _entries(("EC01_R1_001_ptrim.fq", READS))})
    catalog = rnaseq.build_catalog(rna_config, None, workspace, mocker.Mock())
    with pytest.raises(StageFailure):
        catalog.by_name("align").submit(sample)


def test_copy_results(rna_config, sample, mocker):
    run = mocker.patch("seqbatch.workflow.rnaseq.do.run")
    catalog = rnaseq.build_catalog(rna_config, None, Workspace(), mocker.Mock())
    catalog.by_name("copy").submit(sample)
    assert run.call_count == 2
    cmd = run.call_args[0][0]
    assert cmd == ["p3-cp", "ws:%s/.EC01_rna/%s" % (OUT, rnaseq.FPKM_FILE_NAME),
                   "ws:%s/FPKM/EC01_genes.fpkm" % OUT]


def test_prepare_creates_fpkm_folder(rna_config):
    workspace = Workspace()
    rnaseq.prepare(rna_config, None, workspace, None)
    assert workspace.made == [OUT + "/FPKM"]
    workspace = Workspace({OUT: _entries(("FPKM", objectstore.FOLDER))})
    rnaseq.prepare(rna_config, None, workspace, None)
    assert workspace.made == []


def test_output_names(rna_config, sample, mocker):
    catalog = rnaseq.build_catalog(rna_config, None, Workspace(), mocker.Mock())
    assert [rnaseq.output_name(sample, s) for s in catalog][:2] == ["EC01_fq", "EC01_rna"]

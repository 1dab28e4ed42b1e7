import pytest

from seqbatch.pipeline import config_utils, job, stages


def _submit(j):
    return "task"


def test_catalog_order():
    catalog = stages.StageCatalog()
    catalog.add("coverage", stages.SYNC_LOCAL, submit=_submit)
    catalog.add("annotate", stages.ASYNC_REMOTE, submit=_submit, policy={"on_failure": "abandon"})
    terminal = catalog.close()
    assert catalog.names() == ["coverage", "annotate", "done"]
    assert [s.index for s in catalog] == [0, 1, 2]
    assert catalog.terminal == terminal
    assert catalog[1].name == "annotate"
    assert catalog.by_name("annotate").policy == {"on_failure": "abandon"}
    assert not catalog.by_name("coverage").is_done(None)
    j = job.Job("S1", catalog.terminal.index)
    j.merge_phase(1)
    assert catalog.stage_for(j).name == "annotate"
    with pytest.raises(KeyError):
        catalog.by_name("missing")


def test_catalog_from_dicts():
    catalog = stages.StageCatalog([{"name": "trim", "mode": stages.ASYNC_REMOTE, "submit": _submit},
                                   {"name": "done", "mode": stages.TERMINAL}])
    assert len(catalog) == 2


def test_catalog_validation():
    catalog = stages.StageCatalog()
    with pytest.raises(ValueError):
        catalog.terminal
    with pytest.raises(ValueError):
        catalog.add("trim", "batch", submit=_submit)
    with pytest.raises(ValueError):
        catalog.add("trim", stages.ASYNC_REMOTE)
    catalog.add("trim", stages.ASYNC_REMOTE, submit=_submit)
    with pytest.raises(ValueError):
        catalog.add("trim", stages.SYNC_LOCAL, submit=_submit)
    catalog.close()
    with pytest.raises(ValueError):
        catalog.add("copy", stages.SYNC_LOCAL, submit=_submit)


def test_failure_policy_layers():
    catalog = stages.StageCatalog()
    stage = catalog.add("annotate", stages.ASYNC_REMOTE, submit=_submit,
                        policy={"on_failure": "abandon"})
    config = config_utils.prepare_config({})
    assert catalog.failure_policy(stage, config) == {"on_failure": "abandon", "max_retries": None}
    config["stages"] = {"default": {"max_retries": 3}, "annotate": {"on_failure": "retry"}}
    assert catalog.failure_policy(stage, config) == {"on_failure": "retry", "max_retries": 3}

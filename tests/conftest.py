"""Pytest fixtures and test helper functions"""
import pytest

from seqbatch.pipeline import config_utils


@pytest.fixture
def config(tmpdir):
    """Default configuration with no waiting between scheduler cycles."""
    return config_utils.prepare_config({
        "log_dir": str(tmpdir.join("log")),
        "scheduler": {"poll_interval": 0, "max_iterations": 50},
        "resources": {"tmp": {"dir": str(tmpdir.join("tx"))}},
    })

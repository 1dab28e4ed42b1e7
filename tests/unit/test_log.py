import os

from seqbatch import log


def test_setup_local_logging(tmpdir):
    log_dir = str(tmpdir.join("log"))
    handler = log.setup_local_logging({"log_dir": log_dir, "verbose": True})
    try:
        log.logger.info("Scanning input directory.")
        log.logger.debug("Cycle 1: 0 tasks running.")
        log.logger_cl.debug("appserv-query-tasks 101")
    finally:
        handler.pop_application()
        handler.close()
    assert sorted(os.listdir(log_dir)) == ["seqbatch-commands.log", "seqbatch-debug.log", "seqbatch.log"]
    main_log = open(os.path.join(log_dir, "seqbatch.log")).read()
    assert "Scanning input directory." in main_log
    assert "Cycle 1" not in main_log
    assert "appserv-query-tasks" not in main_log
    assert "Cycle 1" in open(os.path.join(log_dir, "seqbatch-debug.log")).read()
    assert "appserv-query-tasks 101" in open(os.path.join(log_dir, "seqbatch-commands.log")).read()

import mock
import pytest

from seqbatch.distributed import poll
from seqbatch.errors import TransientRemoteError


def test_poll_without_handles_skips_service():
    service = mock.Mock()
    assert poll.poll(service, []) == {}
    assert not service.status.called


def test_poll_missing_and_unknown_are_running():
    service = mock.Mock()
    service.status.return_value = {"1": poll.COMPLETED, "2": "suspended", "9": poll.FAILED}
    assert poll.poll(service, ["1", "2", "3"]) == {"1": poll.COMPLETED, "2": poll.RUNNING,
                                                  "3": poll.RUNNING}
    service.status.assert_called_once_with(set(["1", "2", "3"]))


def test_poll_propagates_transport_errors():
    service = mock.Mock()
    service.status.side_effect = TransientRemoteError("timeout")
    with pytest.raises(TransientRemoteError):
        poll.poll(service, ["1"])

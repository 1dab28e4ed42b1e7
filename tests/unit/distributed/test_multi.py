from seqbatch.distributed import multi


def _square(x):
    return x * x


def test_run_multicore_serial():
    assert multi.run_multicore(_square, [[1], [2], None, [3]]) == [1, 4, 9]
    assert multi.run_multicore(_square, []) == []


def test_run_multicore_parallel():
    assert multi.run_multicore(_square, [[x] for x in range(6)], cores=3) == [0, 1, 4, 9, 16, 25]

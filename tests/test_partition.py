from fedexplain.data.partition import partition_dataset
from fedexplain.types import ParticipantStatus


def _rows(n):
    return [{"i": str(i)} for i in range(n)]


def test_partition_even_split():
    parts = partition_dataset(_rows(99))
    assert [p.data_size for p in parts] == [33, 33, 33]
    assert [p.name for p in parts] == ["Client_Alpha", "Client_Beta", "Client_Gamma"]
    assert [p.participant_id for p in parts] == [0, 1, 2]
    assert all(p.status is ParticipantStatus.IDLE for p in parts)


def test_partition_drops_remainder():
    rows = _rows(100)
    parts = partition_dataset(rows)
    assert [p.data_size for p in parts] == [33, 33, 33]
    assigned = [r["i"] for p in parts for r in p.records]
    assert "99" not in assigned


def test_partition_blocks_are_contiguous_and_disjoint():
    rows = _rows(10)
    parts = partition_dataset(rows, ["a", "b"])
    assert [r["i"] for r in parts[0].records] == ["0", "1", "2", "3", "4"]
    assert [r["i"] for r in parts[1].records] == ["5", "6", "7", "8", "9"]

    seen = [r["i"] for p in parts for r in p.records]
    assert len(seen) == len(set(seen))


def test_partition_empty_inputs():
    assert partition_dataset([]) == []
    assert partition_dataset(_rows(5), []) == []


def test_partition_fewer_rows_than_participants():
    parts = partition_dataset(_rows(2))
    assert len(parts) == 3
    assert all(p.data_size == 0 for p in parts)


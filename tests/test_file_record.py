"""Tests for file records, byte sources, transfer units and status transitions."""

from pathlib import Path

import pytest

from uploader.config import UploaderConfig
from uploader.exceptions import InvalidTransitionError
from uploader.file_record import FileRecord, next_file_id
from uploader.sources import LocalFileSource, MemorySource, as_source
from uploader.transfer_unit import ChunkTask, split_file
from uploader.types import ChunkStatus, FileStatus, can_transition_chunk, can_transition_file


def make_record(size: int = 45, name: str = 'photo.JPG') -> FileRecord:
    return FileRecord('WU_FILE_1', MemorySource(b'x' * size, name=name))


class TestFileRecord:
    """File record fields, ids and status handling."""

    def test_fields_from_source(self):
        record = FileRecord('WU_FILE_1', MemorySource(b'x' * 45, name='photo.JPG'), group_info={'album': 'trip'})

        assert record.name == 'photo.JPG'
        assert record.size == 45
        assert record.ext == 'jpg'
        assert record.mime_type == 'image/jpeg'
        assert record.status is FileStatus.NEW
        assert record.loaded == 0
        assert record.group_info == {'album': 'trip'}
        assert record.upload_started is False

    def test_ids_are_unique_and_prefixed(self):
        ids = {next_file_id(lambda seq: f'batch{seq}', 'WU_FILE_') for _ in range(50)}

        assert len(ids) == 50
        assert all(file_id.startswith('WU_FILE_batch') for file_id in ids)

    def test_default_naming_function(self):
        config = UploaderConfig()
        file_id = next_file_id(config.set_name, config.file_id_prefix)
        assert file_id.startswith('WU_FILE_')
        assert file_id[len('WU_FILE_'):].isdigit()

    def test_loaded_is_clamped(self):
        record = make_record(size=45)

        record.loaded = 100
        assert record.loaded == 45

        record.loaded = -3
        assert record.loaded == 0

    def test_valid_transitions(self):
        record = make_record()
        for status in (FileStatus.QUEUED, FileStatus.IN_PROGRESS, FileStatus.ERROR,
                       FileStatus.QUEUED, FileStatus.IN_PROGRESS, FileStatus.COMPLETE):
            record.transition_to(status)
        assert record.status is FileStatus.COMPLETE

    def test_invalid_transition_rejected(self):
        record = make_record()

        with pytest.raises(InvalidTransitionError) as exc_info:
            record.transition_to(FileStatus.COMPLETE)

        assert record.status is FileStatus.NEW
        assert exc_info.value.current is FileStatus.NEW
        assert exc_info.value.target is FileStatus.COMPLETE

    def test_complete_is_terminal(self):
        assert not can_transition_file(FileStatus.COMPLETE, FileStatus.QUEUED)
        assert can_transition_file(FileStatus.COMPLETE, FileStatus.COMPLETE)


class TestSplitFile:
    """Transfer unit ranges."""

    def test_ranges_cover_file(self):
        units = split_file(make_record(size=45), chunk_size=20)

        assert [(u.start, u.end) for u in units] == [(0, 20), (20, 40), (40, 45)]
        assert [u.current_shard for u in units] == [1, 2, 3]
        assert all(u.shard_count == 3 for u in units)
        assert [u.size for u in units] == [20, 20, 5]

    def test_exact_multiple(self):
        units = split_file(make_record(size=40), chunk_size=20)
        assert [(u.start, u.end) for u in units] == [(0, 20), (20, 40)]

    def test_empty_file_yields_one_unit(self):
        units = split_file(make_record(size=0), chunk_size=20)
        assert [(u.start, u.end, u.shard_count) for u in units] == [(0, 0, 1)]

    def test_chunking_disabled(self):
        units = split_file(make_record(size=45), chunk_size=20, chunked=False)
        assert [(u.start, u.end, u.shard_count) for u in units] == [(0, 45, 1)]

    def test_units_are_immutable(self):
        unit = split_file(make_record(), chunk_size=20)[0]
        with pytest.raises(Exception):
            unit.start = 5


class TestChunkTask:
    """Chunk task status handling."""

    def make_task(self) -> ChunkTask:
        record = make_record()
        unit = split_file(record, chunk_size=20)[1]
        return ChunkTask(record, unit, UploaderConfig().transport_config(record.name))

    def test_starts_waiting(self):
        task = self.make_task()
        assert task.status is ChunkStatus.WAIT
        assert task.loaded == 0
        assert task.transport is None
        assert task.label == 'WU_FILE_1#2/3'

    def test_success_cannot_go_back_to_wait(self):
        task = self.make_task()
        task.transition_to(ChunkStatus.PENDING)
        task.transition_to(ChunkStatus.SUCCESS)

        with pytest.raises(InvalidTransitionError):
            task.transition_to(ChunkStatus.WAIT)
        assert task.status is ChunkStatus.SUCCESS

    def test_retryable_states_return_to_wait(self):
        for status in (ChunkStatus.ERROR, ChunkStatus.INTERRUPTED, ChunkStatus.CANCELLED):
            assert can_transition_chunk(status, ChunkStatus.WAIT)
        assert not can_transition_chunk(ChunkStatus.WAIT, ChunkStatus.SUCCESS)

    def test_abort_transport_without_transport(self):
        self.make_task().abort_transport()


class TestSources:
    """Byte sources."""

    @pytest.mark.asyncio
    async def test_local_file_reads_ranges(self, sample_file):
        source = LocalFileSource(sample_file)

        assert source.name == 'test.txt'
        assert source.size == 45
        assert source.mime_type == 'text/plain'
        assert await source.read(10, 20) == b'0123456789'
        assert await source.read(40, 45) == b'abcde'

    def test_missing_path_rejected(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LocalFileSource(tmp_path / 'nope.bin')

    @pytest.mark.asyncio
    async def test_as_source_wraps_handles(self, sample_file):
        assert isinstance(as_source(str(sample_file)), LocalFileSource)
        assert isinstance(as_source(Path(sample_file), name='renamed.txt'), LocalFileSource)
        assert as_source(Path(sample_file), name='renamed.txt').name == 'renamed.txt'

        memory = as_source(b'hello', name='greeting.txt')
        assert isinstance(memory, MemorySource)
        assert await memory.read(1, 3) == b'el'
        assert as_source(memory) is memory

    def test_as_source_rejects_unknown_handles(self):
        with pytest.raises(TypeError):
            as_source(12345)

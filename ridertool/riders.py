import io
import logging
import threading
import contextlib
import numpy as np

from collections import namedtuple
from construct import CheckError, StreamError
from ridersstructs import RidersHeader

log = logging.getLogger(__name__)

int32sl = np.dtype("<i4")

FileEntry = namedtuple("FileEntry", "offset size")
Group = namedtuple("Group", "id files")

ABSENT = FileEntry(0, 0)

class RidersArchiveError(Exception):
    pass

class MalformedHeader(RidersArchiveError):
    pass

class TruncatedArchive(RidersArchiveError):
    pass

def parse_header(stream, archive_size):
    """Read the header at the stream's position.

    Returns a container with group_count, file_counts, ids and the raw
    offsets as a list of ints. The first item table is skipped.
    """
    try:
        header = RidersHeader.parse_stream(stream, archive_size=archive_size)
    except CheckError as e:
        # also where the file was cut inside its group tables and the size
        # was measured from the stream
        raise MalformedHeader("group count does not fit in a %d byte archive, "
                              "the count is corrupt or the file is cut short" % archive_size) from e
    except StreamError as e:
        raise TruncatedArchive("archive ends inside its header") from e

    header.offsets = np.frombuffer(header.offsets, dtype=int32sl).tolist()
    return header

def resolve_offsets(file_counts, raw_offsets, archive_size):
    """Assign an (offset, size) to every file slot, one tuple per group.

    Sizes are not stored on disk. A file ends at the next non-zero raw
    offset after its own, or at archive_size for the last one. Zero
    offsets are absent files and never count as a boundary.

    Slots past the end of raw_offsets are left as ABSENT.
    """
    total = sum(file_counts)
    if len(raw_offsets) < total:
        log.warning("offset table has %d of %d entries, trailing files are absent",
                    len(raw_offsets), total)

    groups = []
    i = 0
    for count in file_counts:
        files = []
        for _ in range(count):
            if i >= len(raw_offsets):
                files.append(ABSENT)
                continue

            offset = raw_offsets[i]

            # rescanned per slot so runs of zeros each see the same boundary
            j = i + 1
            while j < len(raw_offsets) and raw_offsets[j] == 0:
                j += 1
            next_offset = raw_offsets[j] if j < len(raw_offsets) else archive_size

            files.append(FileEntry(offset, next_offset - offset))
            i += 1
        groups.append(tuple(files))
    return groups

class ArchiveSource:
    """The stream an archive reads file data from.

    Owned by a single Archive. Reads seek the shared stream, so each
    seek and read pair holds a lock for its duration.
    """
    __slots__ = "stream", "start", "_lock"

    def __init__(self, stream, start=None):
        self.stream = stream
        self.start = stream.tell() if start is None else start
        self._lock = threading.Lock()

    @property
    def closed(self):
        return self.stream.closed

    def read_at(self, offset, size):
        with self._lock:
            self.stream.seek(self.start + offset)
            data = self.stream.read(size)
        if len(data) != size:
            raise TruncatedArchive("expected %d bytes at 0x%x, found %d" % (size, offset, len(data)))
        return data

    def close(self):
        if not self.stream.closed:
            self.stream.close()

class Archive:
    __slots__ = "groups", "size", "source"

    def __init__(self, groups, size, source):
        self.groups = groups
        self.size = size
        self.source = source

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self.source.close()

    def group(self, group_id):
        for group in self.groups:
            if group.id == group_id:
                return group
        raise KeyError(group_id)

    def _group(self, group):
        if isinstance(group, Group):
            return group
        return self.group(group)

    def get_file(self, group, index):
        """Data for one file, or b"" if the header lists it but it is absent."""
        files = self._group(group).files
        if not 0 <= index < len(files):
            raise IndexError("file index %d out of range" % index)
        entry = files[index]
        if entry.offset <= 0:
            return b""
        if entry.size < 0:
            raise MalformedHeader("file at 0x%x ends before it starts" % entry.offset)
        return self.source.read_at(entry.offset, entry.size)

    def get_files(self, group):
        group = self._group(group)
        return [self.get_file(group, x) for x in range(len(group.files))]

    def get_all_files(self):
        return {group.id: self.get_files(group) for group in self.groups}

def parse(stream, archive_size=None):
    """Parse the archive starting at the stream's current position.

    Offsets are relative to that position. Without archive_size the
    archive is taken to run to the end of the stream. The stream must
    stay open for as long as files are read from the result.
    """
    start = stream.tell()
    if archive_size is None:
        archive_size = stream.seek(0, io.SEEK_END) - start
        stream.seek(start)

    header = parse_header(stream, archive_size)
    log.debug("%d groups, %d files, %d bytes",
              header.group_count, sum(header.file_counts), archive_size)

    files = resolve_offsets(header.file_counts, header.offsets, archive_size)
    groups = tuple(Group(*x) for x in zip(header.ids, files))
    return Archive(groups, archive_size, ArchiveSource(stream, start))

def open_archive(path):
    """Open and parse an archive file. The file is closed if parsing fails."""
    with contextlib.ExitStack() as stack:
        fd = stack.enter_context(open(path, "rb"))
        archive = parse(fd)
        stack.pop_all()
    return archive

__all__ = [
    "Archive", "ArchiveSource", "FileEntry", "Group", "ABSENT",
    "RidersArchiveError", "MalformedHeader", "TruncatedArchive",
    "parse", "parse_header", "resolve_offsets", "open_archive",
]

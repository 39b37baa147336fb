from construct import *

def _header_size(count):
    # u32 count, u8 file counts, pad, u16 first items, u16 ids
    return 4 + count + (-(4 + count) % 4) + 2 * count + 2 * count

RidersHeader = Struct(
    "group_count" / Int32ul,
    Check(lambda this: _header_size(this.group_count) <= this._params.archive_size),
    "file_counts" / Array(this.group_count, Int8ul),
    Padding(lambda this: -(4 + this.group_count) % 4),
    # first item of each group in a global table, offsets resolve without it
    Padding(this.group_count * 2),
    "ids"     / Array(this.group_count, Int16ul),
    "offsets" / Bytes(lambda this: 4 * sum(this.file_counts)),
)

__all__ = ["RidersHeader"]

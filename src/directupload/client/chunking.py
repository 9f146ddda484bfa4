"""Deterministic split of a file into multipart byte ranges."""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class PartRange:
    """Half-open byte range ``[start, end)`` of one part."""

    part_number: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


def count_parts(file_size: int, part_size: int) -> int:
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    if file_size < 0:
        raise ValueError("file_size must not be negative")
    return math.ceil(file_size / part_size)


def plan_parts(file_size: int, part_size: int) -> tuple[PartRange, ...]:
    """Partition ``[0, file_size)`` into parts of ``part_size`` bytes.

    Parts are numbered from 1, contiguous and non-overlapping; only the last
    one may be shorter. The result depends on the two sizes alone, so client
    and server agree on the part count without exchanging the layout.

    Raises:
        ValueError: If part_size is not positive or file_size is negative
    """
    return tuple(
        PartRange(
            part_number=index + 1,
            start=index * part_size,
            end=min((index + 1) * part_size, file_size),
        )
        for index in range(count_parts(file_size, part_size))
    )

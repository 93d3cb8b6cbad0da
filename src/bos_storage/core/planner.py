"""Split an object into ordered byte-range parts."""

import math
from typing import List, NamedTuple

from .exceptions import ValidationError
from .models import MAX_PART_NUMBER, Part


class ChunkPlan(NamedTuple):
    offset: int
    size: int


def plan_parts(total_size: int, chunk_size: int, min_part_size: int = 1) -> List[ChunkPlan]:
    """Return the ``(offset, size)`` ranges covering ``total_size`` bytes.

    Every range but the last is exactly ``chunk_size`` long. The result only
    depends on the arguments, so a resumed upload re-plans to the same parts.

    Raises:
        ValidationError: for an empty object, a non-positive chunk size, a
            chunk size below ``min_part_size`` when more than one part is
            needed, or more than ``MAX_PART_NUMBER`` parts.
    """
    if total_size <= 0:
        raise ValidationError("total_size", total_size, "nothing to upload")
    if chunk_size <= 0:
        raise ValidationError("chunk_size", chunk_size, "must be positive")

    count = math.ceil(total_size / chunk_size)
    if count > MAX_PART_NUMBER:
        raise ValidationError(
            "chunk_size",
            chunk_size,
            f"too small for {total_size} bytes: needs {count} parts, "
            f"at most {MAX_PART_NUMBER} allowed",
        )
    if count > 1 and chunk_size < min_part_size:
        raise ValidationError(
            "chunk_size", chunk_size, f"must be at least {min_part_size} bytes"
        )

    last_size = total_size - chunk_size * (count - 1)
    return [ChunkPlan(i * chunk_size, chunk_size) for i in range(count - 1)] + [
        ChunkPlan(chunk_size * (count - 1), last_size)
    ]


def build_part_table(total_size: int, chunk_size: int, min_part_size: int = 1) -> List[Part]:
    """Plan the parts and number them from 1 in offset order."""
    return [
        Part(part_number=number, offset=plan.offset, size=plan.size)
        for number, plan in enumerate(
            plan_parts(total_size, chunk_size, min_part_size), start=1
        )
    ]

from dataclasses import dataclass
from typing import Iterable, List

from .errors import ValidationError


@dataclass(frozen=True, order=True)
class Stride:
    from_block: int
    to_block: int

    def __post_init__(self) -> None:
        if self.from_block > self.to_block:
            raise ValidationError(f"stride from {self.from_block} is after to {self.to_block}")

    def to_dict(self) -> dict:
        return {"from": self.from_block, "to": self.to_block}

    @classmethod
    def from_dict(cls, raw: dict) -> "Stride":
        return cls(int(raw["from"]), int(raw["to"]))


def _normalized(strides: Iterable[Stride]) -> List[Stride]:
    result: List[Stride] = []
    for s in sorted(strides):
        if result and s.from_block <= result[-1].to_block + 1:
            last = result[-1]
            result[-1] = Stride(last.from_block, max(last.to_block, s.to_block))
        else:
            result.append(s)
    return result


def contains(a: Stride, b: Stride) -> bool:
    return a.from_block <= b.from_block and a.to_block >= b.to_block


def add(stride: Stride, covered: Iterable[Stride]) -> List[Stride]:
    return _normalized(list(covered) + [stride])


def remove(stride: Stride, covered: Iterable[Stride]) -> List[Stride]:
    result: List[Stride] = []
    for s in _normalized(covered):
        if s.to_block < stride.from_block or s.from_block > stride.to_block:
            result.append(s)
            continue
        if s.from_block < stride.from_block:
            result.append(Stride(s.from_block, stride.from_block - 1))
        if s.to_block > stride.to_block:
            result.append(Stride(stride.to_block + 1, s.to_block))
    return result


def plan(from_block: int, to_block: int, covered: Iterable[Stride]) -> List[Stride]:
    """Gaps of [from_block, to_block] not yet covered, ascending."""
    if from_block > to_block:
        raise ValidationError(f"plan from {from_block} is after to {to_block}")
    gaps: List[Stride] = []
    cursor = from_block
    for s in _normalized(covered):
        if s.to_block < cursor:
            continue
        if s.from_block > to_block:
            break
        if s.from_block > cursor:
            gaps.append(Stride(cursor, s.from_block - 1))
        cursor = s.to_block + 1
        if cursor > to_block:
            return gaps
    gaps.append(Stride(cursor, to_block))
    return gaps


def rollback(covered: Iterable[Stride], end_block: int) -> List[Stride]:
    result: List[Stride] = []
    for s in _normalized(covered):
        if s.from_block > end_block:
            break
        result.append(Stride(s.from_block, min(s.to_block, end_block)))
    return result

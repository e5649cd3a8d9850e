"""
Append-only lineage log of a search.

Records are keyed by the integer `ref` of the members. Every worker fills its
own `Recorder`; the search merges them at the end of each batch.
"""
import enum
import json
import time
from typing import Dict, List, NamedTuple, Optional

from .expression import string_tree


class EventType(enum.Enum):
    MUTATION = "mutation"
    CROSSOVER = "crossover"
    TUNING = "tuning"
    DEATH = "death"
    BIRTH = "birth"


class Event(NamedTuple):
    type: EventType
    time: float
    child: Optional[int] = None
    detail: Optional[str] = None


def make_event(type: EventType, child: Optional[int] = None, detail: Optional[str] = None) -> Event:
    return Event(type, time.time(), child, detail)


class LineageRecord:
    __slots__ = ("tree", "loss", "score", "parent", "events")

    def __init__(self, tree=None, loss=float("nan"), score=float("nan"), parent=-1):
        self.tree = tree
        self.loss = loss
        self.score = score
        self.parent = parent
        self.events: List[Event] = list()


class Recorder:
    def __init__(self):
        self.records: Dict[int, LineageRecord] = dict()

    def __len__(self):
        return len(self.records)

    def __contains__(self, ref):
        return ref in self.records

    def __getitem__(self, ref) -> LineageRecord:
        return self.records[ref]

    def register(self, member) -> LineageRecord:
        """create the record of `member`, or fill in a placeholder"""
        record = self.records.get(member.ref)
        if record is None:
            record = self.records[member.ref] = LineageRecord()
        if record.tree is None:
            record.tree = member.tree.copy()
            record.loss, record.score, record.parent = member.loss, member.score, member.parent
        return record

    def append(self, ref: int, event: Event) -> None:
        record = self.records.get(ref)
        if record is None:  # member registered by another worker
            record = self.records[ref] = LineageRecord()
        record.events.append(event)

    def merge(self, other: "Recorder") -> None:
        for ref, theirs in other.records.items():
            ours = self.records.get(ref)
            if ours is None:
                self.records[ref] = theirs
                continue
            if ours.tree is None and theirs.tree is not None:
                ours.tree, ours.loss, ours.score, ours.parent = (
                    theirs.tree,
                    theirs.loss,
                    theirs.score,
                    theirs.parent,
                )
            ours.events.extend(theirs.events)
            ours.events.sort(key=lambda e: e.time)

    def to_dict(self, options, varnames=None) -> dict:
        out = dict()
        for ref, record in self.records.items():
            out[str(ref)] = dict(
                tree=None if record.tree is None else string_tree(record.tree, options, varnames),
                loss=record.loss,
                score=record.score,
                parent=record.parent,
                events=[
                    dict(type=e.type.value, time=e.time, child=e.child, detail=e.detail)
                    for e in record.events
                ],
            )
        return out

    def dump(self, path, options, varnames=None) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(options, varnames), f)

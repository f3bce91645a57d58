"""
Domain Models Module
====================

Immutable records shared by every analysis type:

- :class:`Motif` and :class:`TFCluster` describe what is searched for,
- :class:`TFSet` and :class:`TFClusterSet` are ordered, id-keyed collections of them,
- :class:`SequenceSet` holds the sequences searched, already encoded for the scan kernel,
- :class:`Site` and :class:`SitePair` describe what was found.

Optional numeric values use ``None`` for "not available".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from dataclasses import field as dc_field
from functools import cached_property
from typing import Dict, Iterable, Iterator, List, Literal, Mapping, Optional, Sequence, Tuple

import numpy as np

from opossum.exceptions import EmptyInputError, InputValidationError, MotifError
from opossum.functions import (
    count_gc,
    extend_with_n_row,
    information_content,
    matrix_gc_content,
    pcm_to_pfm,
    pfm_to_pwm,
    score_bounds,
)
from opossum.ragged import RaggedData, encode_sequences

MatrixType = Literal["PFM", "PWM"]

_COORD_RE = re.compile(r"^(chr\w+):(\d+)-(\d+)")


@dataclass(frozen=True)
class Motif:
    """Immutable TF binding profile.

    Attributes
    ----------
    id : str
        Unique TF identifier
    name : str
        Human-readable TF name
    matrix : np.ndarray
        4xL matrix with rows A, C, G, T
    matrix_type : str
        ``"PFM"`` for counts or frequencies, ``"PWM"`` for log-odds weights
    tf_class, family, tax_group : str, optional
        Annotation carried through to the results table
    tags : dict
        Any further annotation
    """

    id: str
    name: str
    matrix: np.ndarray = dc_field(hash=False, compare=False, repr=False)
    matrix_type: MatrixType = "PFM"
    tf_class: Optional[str] = None
    family: Optional[str] = None
    tax_group: Optional[str] = None
    tags: dict = dc_field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self):
        matrix = np.asarray(self.matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != 4 or matrix.shape[1] == 0:
            raise MotifError(self.id, f"matrix must have shape (4, L) with L > 0, got {matrix.shape}")
        if self.matrix_type not in ("PFM", "PWM"):
            raise MotifError(self.id, f"unknown matrix type {self.matrix_type!r}")
        if self.matrix_type == "PFM" and np.any(matrix < 0):
            raise MotifError(self.id, "frequency matrix contains negative values")
        object.__setattr__(self, "matrix", matrix)

    def __hash__(self):
        return hash((self.id, self.name, self.matrix_type))

    @property
    def length(self) -> int:
        return int(self.matrix.shape[1])

    @cached_property
    def pwm(self) -> np.ndarray:
        """4xL log-odds weight matrix."""
        if self.matrix_type == "PWM":
            return self.matrix
        return pfm_to_pwm(pcm_to_pfm(self.matrix))

    @cached_property
    def representation(self) -> np.ndarray:
        """5xL matrix used by the scan kernel (row 4 scores N)."""
        return np.ascontiguousarray(extend_with_n_row(self.pwm), dtype=np.float64)

    def score_bounds(self) -> Tuple[float, float]:
        return score_bounds(self.pwm)

    def information_content(self) -> Optional[float]:
        if self.matrix_type != "PFM":
            return None
        return information_content(self.matrix)

    def gc_content(self) -> Optional[float]:
        if self.matrix_type != "PFM":
            return None
        return matrix_gc_content(self.matrix)


@dataclass(frozen=True)
class TFCluster:
    """A group of TFs with similar binding profiles, searched as one unit."""

    id: str
    name: str
    tf_ids: Tuple[str, ...]
    tf_class: Optional[str] = None
    family: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "tf_ids", tuple(self.tf_ids))
        if not self.tf_ids:
            raise InputValidationError(f"TF cluster {self.id} has no member TFs")


@dataclass(frozen=True)
class Site:
    """A motif hit. Coordinates are 1-based and inclusive."""

    id: str
    seq_id: str
    start: int
    end: int
    strand: int
    score: float
    rel_score: float
    seq: str

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seq_id": self.seq_id,
            "start": self.start,
            "end": self.end,
            "strand": self.strand,
            "score": self.score,
            "rel_score": self.rel_score,
            "seq": self.seq,
        }


@dataclass(frozen=True)
class SitePair:
    """An anchor site paired with a proximal site of another (or the same) TF."""

    anchor: Site
    site: Site
    distance: int


class _RecordSet:
    """Insertion-ordered collection of records keyed by ``id``."""

    kind = "record"

    def __init__(self, records: Iterable = ()):
        self._records: Dict[str, object] = {}
        for record in records:
            if record.id in self._records:
                raise InputValidationError(f"Duplicate {self.kind} id: {record.id}")
            self._records[record.id] = record

    def ids(self) -> List[str]:
        return list(self._records)

    def get(self, record_id: str):
        try:
            return self._records[record_id]
        except KeyError:
            raise InputValidationError(f"Unknown {self.kind} id: {record_id}") from None

    def subset(self, ids: Iterable[str]):
        return type(self)(self.get(record_id) for record_id in ids)

    def __contains__(self, record_id) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


class TFSet(_RecordSet):
    """Ordered set of :class:`Motif` records."""

    kind = "TF"


class TFClusterSet(_RecordSet):
    """Ordered set of :class:`TFCluster` records."""

    kind = "TF cluster"

    def validate_members(self, tf_set: TFSet) -> None:
        """Every cluster must reference at least one TF of ``tf_set``."""
        for cluster in self:
            if not any(tf_id in tf_set for tf_id in cluster.tf_ids):
                raise InputValidationError(f"TF cluster {cluster.id} references no known TF: {list(cluster.tf_ids)}")


class SequenceSet:
    """
    Ordered set of nucleotide sequences.

    Sequences are identified as ``seq0 .. seqN`` in input order. The original
    FASTA header is kept as the display id; headers starting with genomic
    coordinates (``chrN:start-end``) are trimmed to those coordinates.
    """

    def __init__(self, sequences: Sequence[str], display_ids: Optional[Sequence[str]] = None, name: str = "sequence"):
        if len(sequences) == 0:
            raise EmptyInputError(f"{name} set")
        if display_ids is not None and len(display_ids) != len(sequences):
            raise InputValidationError("Number of display ids does not match the number of sequences")

        self.name = name
        self.ids: List[str] = [f"seq{i}" for i in range(len(sequences))]
        self.sequences: Dict[str, str] = {}
        self.display_ids: Dict[str, str] = {}

        for i, seq_id in enumerate(self.ids):
            seq = sequences[i].strip().upper()
            display_id = display_ids[i] if display_ids is not None else None
            if not seq:
                raise InputValidationError(
                    f"Poorly formatted {name} sequences. Sequence ID {display_id or seq_id} has no actual sequence"
                )
            self.sequences[seq_id] = seq
            self.display_ids[seq_id] = _normalise_display_id(display_id) if display_id else seq_id

        self.encoded: RaggedData = encode_sequences([self.sequences[seq_id] for seq_id in self.ids])

    @classmethod
    def from_dict(cls, mapping: Mapping[str, str], name: str = "sequence") -> "SequenceSet":
        """Build from ``{display_id: sequence}``."""
        return cls(list(mapping.values()), display_ids=list(mapping.keys()), name=name)

    def get(self, seq_id: str) -> str:
        return self.sequences[seq_id]

    def length(self, seq_id: str) -> int:
        return len(self.sequences[seq_id])

    def coordinates(self, seq_id: str) -> Optional[Tuple[str, int, int]]:
        """Genomic coordinates parsed from the display id, if any."""
        match = _COORD_RE.match(self.display_ids[seq_id])
        if match is None:
            return None
        return match.group(1), int(match.group(2)), int(match.group(3))

    def total_length(self) -> int:
        """Number of A/C/G/T bases; N and other symbols are not counted."""
        return count_gc(self.encoded)[1]

    def gc_content(self) -> float:
        gc_count, total = count_gc(self.encoded)
        if total == 0:
            return 0.0
        return gc_count / total

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        for seq_id in self.ids:
            yield seq_id, self.sequences[seq_id]


def _normalise_display_id(display_id: str) -> str:
    display_id = display_id.strip()
    match = _COORD_RE.match(display_id)
    if match:
        return f"{match.group(1)}:{match.group(2)}-{match.group(3)}"
    return display_id

"""
Count Aggregator
================

Per (sequence, TF) hit tallies for one sequence set, plus the per-site
values (distances to the peak maximum) used by the KS test.

A :class:`Counts` table always holds an entry for every (sequence, TF) pair
of its declared id lists; pairs never touched read as zero.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from opossum.exceptions import InputValidationError, ResultSetError
from opossum.models import SequenceSet, Site, SitePair

logger = logging.getLogger(__name__)

SiteMap = Mapping[str, Mapping[str, Sequence]]


class Counts:
    """Hit count table keyed by sequence (or gene) id and TF (or cluster) id."""

    def __init__(self, seq_ids: Sequence[str], tf_ids: Sequence[str], with_lengths: bool = False):
        self.seq_ids: List[str] = list(seq_ids)
        self.tf_ids: List[str] = list(tf_ids)
        self._seq_index = _index(self.seq_ids, "sequence")
        self._tf_index = _index(self.tf_ids, "TF")
        self._counts = np.zeros((len(self.seq_ids), len(self.tf_ids)), dtype=np.int64)
        self._lengths = np.zeros_like(self._counts) if with_lengths else None
        self.missing_seq_ids: List[str] = []
        self.missing_tf_ids: List[str] = []

    @property
    def has_lengths(self) -> bool:
        return self._lengths is not None

    @property
    def num_seqs(self) -> int:
        return len(self.seq_ids)

    def set_count(self, seq_id: str, tf_id: str, count: int) -> None:
        if count < 0:
            raise InputValidationError(f"Negative count for ({seq_id}, {tf_id}): {count}")
        self._counts[self._seq_index[seq_id], self._tf_index[tf_id]] = count

    def count(self, seq_id: str, tf_id: str) -> int:
        return int(self._counts[self._seq_index[seq_id], self._tf_index[tf_id]])

    def set_length(self, seq_id: str, tf_id: str, length: int) -> None:
        if self._lengths is None:
            raise InputValidationError("Count table was built without nucleotide lengths")
        self._lengths[self._seq_index[seq_id], self._tf_index[tf_id]] = length

    def length(self, seq_id: str, tf_id: str) -> int:
        if self._lengths is None:
            return 0
        return int(self._lengths[self._seq_index[seq_id], self._tf_index[tf_id]])

    def tfbs_count(self, tf_id: str) -> int:
        """Total number of sites of ``tf_id`` over all sequences."""
        return int(self._counts[:, self._tf_index[tf_id]].sum())

    def tfbs_length(self, tf_id: str) -> int:
        """Total nucleotides covered by sites of ``tf_id`` (cluster tables only)."""
        if self._lengths is None:
            return 0
        return int(self._lengths[:, self._tf_index[tf_id]].sum())

    def gene_hits(self, tf_id: str) -> int:
        """Number of sequences with at least one site of ``tf_id``."""
        return int(np.count_nonzero(self._counts[:, self._tf_index[tf_id]]))

    def gene_no_hits(self, tf_id: str) -> int:
        return self.num_seqs - self.gene_hits(tf_id)

    def hit_seq_ids(self, tf_id: str) -> List[str]:
        column = self._counts[:, self._tf_index[tf_id]]
        return [self.seq_ids[i] for i in np.flatnonzero(column)]

    def subset(
        self,
        seq_ids: Optional[Iterable[str]] = None,
        tf_ids: Optional[Iterable[str]] = None,
        fill_missing_tfs: bool = False,
    ) -> "Counts":
        """Restrict the table to the given ids.

        Requested ids absent from this table are skipped and listed in
        ``missing_seq_ids`` / ``missing_tf_ids`` of the returned table. With
        ``fill_missing_tfs`` unknown TF ids are kept instead, in request
        order, with zero counts (as :meth:`from_rows` does for declared ids).
        """
        keep_seqs, missing_seqs = _split_known(self.seq_ids if seq_ids is None else seq_ids, self._seq_index)
        requested_tfs = list(dict.fromkeys(self.tf_ids if tf_ids is None else tf_ids))
        keep_tfs, missing_tfs = _split_known(requested_tfs, self._tf_index)
        if missing_seqs or missing_tfs:
            logger.warning(
                f"Subset requested {len(missing_seqs)} unknown sequence id(s), {len(missing_tfs)} unknown TF id(s)"
            )

        out_tfs = requested_tfs if fill_missing_tfs else keep_tfs
        sub = Counts(keep_seqs, out_tfs, with_lengths=self.has_lengths)
        rows = [self._seq_index[s] for s in keep_seqs]
        for tf_id in keep_tfs:
            src, dst = self._tf_index[tf_id], sub._tf_index[tf_id]
            sub._counts[:, dst] = self._counts[rows, src]
            if self._lengths is not None:
                sub._lengths[:, dst] = self._lengths[rows, src]
        sub.missing_seq_ids = missing_seqs
        sub.missing_tf_ids = missing_tfs
        return sub

    def merge(self, other: "Counts") -> "Counts":
        """Combine two partial tables covering disjoint sequences or disjoint TFs."""
        if self.has_lengths != other.has_lengths:
            raise ResultSetError("count merge (length tracking differs)")

        if self.tf_ids == other.tf_ids and not set(self.seq_ids) & set(other.seq_ids):
            merged = Counts(self.seq_ids + other.seq_ids, self.tf_ids, with_lengths=self.has_lengths)
            merged._counts = np.vstack([self._counts, other._counts])
            if self._lengths is not None:
                merged._lengths = np.vstack([self._lengths, other._lengths])
            return merged

        if self.seq_ids == other.seq_ids and not set(self.tf_ids) & set(other.tf_ids):
            merged = Counts(self.seq_ids, self.tf_ids + other.tf_ids, with_lengths=self.has_lengths)
            merged._counts = np.hstack([self._counts, other._counts])
            if self._lengths is not None:
                merged._lengths = np.hstack([self._lengths, other._lengths])
            return merged

        shared = sorted(set(self.seq_ids) & set(other.seq_ids)) or sorted(set(self.tf_ids) & set(other.tf_ids))
        raise ResultSetError("count merge", shared)

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Tuple],
        seq_ids: Optional[Sequence[str]] = None,
        tf_ids: Optional[Sequence[str]] = None,
    ) -> "Counts":
        """Build a table from ``(seq_id, tf_id, count[, length])`` rows.

        Declared ids that never appear in ``rows`` keep a zero count. Without
        declared ids the id lists are taken from the rows in first-seen order.
        """
        rows = [tuple(row) for row in rows]
        with_lengths = any(len(row) > 3 for row in rows)
        if seq_ids is None:
            seq_ids = list(dict.fromkeys(row[0] for row in rows))
        if tf_ids is None:
            tf_ids = list(dict.fromkeys(row[1] for row in rows))

        counts = cls(seq_ids, tf_ids, with_lengths=with_lengths)
        for row in rows:
            if len(row) < 3:
                raise InputValidationError(f"Count row needs (seq_id, tf_id, count): {row!r}")
            try:
                counts.set_count(row[0], row[1], int(row[2]))
                if with_lengths:
                    counts.set_length(row[0], row[1], int(row[3]) if len(row) > 3 else 0)
            except KeyError as e:
                raise InputValidationError(f"Count row references undeclared id {e}") from None
        return counts

    def to_frame(self) -> pd.DataFrame:
        """Hit counts as a DataFrame (rows: sequences, columns: TFs)."""
        return pd.DataFrame(self._counts, index=pd.Index(self.seq_ids, name="seq_id"), columns=self.tf_ids)

    def __repr__(self) -> str:
        return f"Counts({self.num_seqs} sequences x {len(self.tf_ids)} TFs)"


class Values:
    """Per (sequence, TF) lists of site values."""

    def __init__(self, tf_ids: Sequence[str]):
        self.tf_ids: List[str] = list(tf_ids)
        self._values: Dict[str, Dict[str, List[float]]] = {tf_id: {} for tf_id in self.tf_ids}

    def add_value(self, seq_id: str, tf_id: str, value: float) -> None:
        self._values[tf_id].setdefault(seq_id, []).append(float(value))

    def values(self, seq_id: str, tf_id: str) -> List[float]:
        return list(self._values[tf_id].get(seq_id, []))

    def all_values(self, tf_id: str) -> np.ndarray:
        per_seq = self._values.get(tf_id, {})
        if not per_seq:
            return np.empty(0, dtype=np.float64)
        return np.concatenate([np.asarray(v, dtype=np.float64) for v in per_seq.values()])


def counts_from_sites(
    seq_ids: Sequence[str], tf_ids: Sequence[str], site_map: SiteMap, with_lengths: bool = False
) -> Counts:
    """Tally resolved hits (or hit pairs) per sequence and TF.

    ``site_map`` is ``{tf_id: {seq_id: [Site or SitePair]}}``; absent entries
    count as zero. With ``with_lengths`` the nucleotide length of each site
    (the paired site for a ``SitePair``) is summed as well.
    """
    counts = Counts(seq_ids, tf_ids, with_lengths=with_lengths)
    for tf_id in tf_ids:
        per_seq = site_map.get(tf_id, {})
        for seq_id in seq_ids:
            sites = per_seq.get(seq_id) or []
            counts.set_count(seq_id, tf_id, len(sites))
            if with_lengths:
                counts.set_length(seq_id, tf_id, sum(_nucleotides(item) for item in sites))
    return counts


def _nucleotides(item) -> int:
    if isinstance(item, SitePair):
        return len(item.site.seq)
    return len(item.seq)


def compute_peak_distances(
    sequences: SequenceSet,
    site_map: SiteMap,
    peak_positions: Optional[Mapping[str, int]] = None,
) -> Values:
    """Distance of each site centre to the peak maximum, relative to sequence length.

    The peak maximum is taken from ``peak_positions`` (genomic coordinate)
    when the sequence display id carries ``chr:start-end`` coordinates, and is
    otherwise assumed to be the centre of the sequence.
    """
    distances = Values(list(site_map))
    for tf_id, per_seq in site_map.items():
        for seq_id in sequences.ids:
            sites: List[Site] = sorted(per_seq.get(seq_id) or [], key=lambda s: s.start)
            if not sites:
                continue

            seq_length = sequences.length(seq_id)
            coords = sequences.coordinates(seq_id)
            if coords is not None and peak_positions and seq_id in peak_positions:
                peak_loc = peak_positions[seq_id] - coords[1] + 1
            else:
                peak_loc = seq_length / 2

            for site in sites:
                site_loc = site.start + len(site.seq) / 2
                distances.add_value(seq_id, tf_id, abs(site_loc - peak_loc) / seq_length)
    return distances


def _index(ids: Sequence[str], kind: str) -> Dict[str, int]:
    index = {}
    for i, item in enumerate(ids):
        if item in index:
            raise InputValidationError(f"Duplicate {kind} id in count table: {item}")
        index[item] = i
    return index


def _split_known(ids: Iterable[str], index: Mapping[str, int]) -> Tuple[List[str], List[str]]:
    known, missing = [], []
    for item in ids:
        (known if item in index else missing).append(item)
    return known, missing

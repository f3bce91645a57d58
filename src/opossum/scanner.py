"""Motif scanning: relative-score thresholding over both strands."""

import logging
import re
from typing import Dict, List, Optional, Union

import numpy as np

from opossum.exceptions import MotifError, ThresholdError
from opossum.functions import batch_all_scores
from opossum.models import Motif, SequenceSet, Site
from opossum.ragged import RaggedData, encode_sequence, ragged_from_list, revcom

logger = logging.getLogger(__name__)

_THRESHOLD_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(%?)\s*$")

Threshold = Union[str, float, int]


def parse_threshold(value: Threshold) -> float:
    """Normalise a relative score threshold to a fraction in [0, 1].

    ``"80%"``, ``"80 %"``, ``0.8`` and ``"0.8"`` all give ``0.8``. A bare number
    greater than 1 is rejected rather than guessed to be a percentage.
    """
    if isinstance(value, bool):
        raise ThresholdError(value, "expected a number or percentage")

    if isinstance(value, (int, float)):
        number = float(value)
        percent = False
    else:
        match = _THRESHOLD_RE.match(str(value))
        if match is None:
            raise ThresholdError(value, "expected a number or percentage")
        number = float(match.group(1))
        percent = match.group(2) == "%"

    if percent:
        number /= 100.0
    elif number > 1.0:
        raise ThresholdError(value, "fractional thresholds must be at most 1; use a '%' suffix for percentages")

    if not np.isfinite(number) or number < 0.0 or number > 1.0:
        raise ThresholdError(value, "must lie between 0 and 1 (0% and 100%)")

    return number


def _checked_bounds(motif: Motif) -> tuple[float, float]:
    if not np.all(np.isfinite(motif.pwm)):
        raise MotifError(motif.id, "weight matrix contains non-finite values")
    min_score, max_score = motif.score_bounds()
    if max_score <= min_score:
        raise MotifError(motif.id, f"maximum score equals minimum score ({max_score:.4f})")
    return min_score, max_score


def _sites_from_scores(
    motif: Motif,
    seq_id: str,
    seq: str,
    fwd: np.ndarray,
    rev: np.ndarray,
    threshold: float,
    min_score: float,
    max_score: float,
) -> List[Site]:
    score_range = max_score - min_score
    sites = []
    for strand, scores in ((1, fwd), (-1, rev)):
        if scores.size == 0:
            continue
        rel_scores = (scores - min_score) / score_range
        for pos in np.flatnonzero(rel_scores >= threshold):
            pos = int(pos)
            window = seq[pos : pos + motif.length]
            sites.append(
                Site(
                    id=motif.id,
                    seq_id=seq_id,
                    start=pos + 1,
                    end=pos + motif.length,
                    strand=strand,
                    score=float(scores[pos]),
                    rel_score=float(rel_scores[pos]),
                    seq=window if strand == 1 else revcom(window),
                )
            )
    sites.sort(key=lambda s: (s.start, -s.strand))
    return sites


def _scan_encoded(
    motif: Motif, seq_ids: List[str], seqs: List[str], encoded: RaggedData, threshold: float
) -> Dict[str, List[Site]]:
    min_score, max_score = _checked_bounds(motif)
    matrix = motif.representation

    fwd = batch_all_scores(encoded, matrix, is_revcomp=False)
    rev = batch_all_scores(encoded, matrix, is_revcomp=True)

    hits = {}
    for i, seq_id in enumerate(seq_ids):
        hits[seq_id] = _sites_from_scores(
            motif, seq_id, seqs[i], fwd.get_slice(i), rev.get_slice(i), threshold, min_score, max_score
        )
    return hits


def scan(sequence: str, motif: Motif, threshold: Threshold, seq_id: Optional[str] = None) -> List[Site]:
    """Find every window of ``sequence`` whose relative score reaches ``threshold``.

    Both strands are searched. Coordinates are 1-based inclusive on the given
    strand; minus-strand hits carry the reverse complement of the window.
    Overlapping hits are all reported.
    """
    rel_threshold = parse_threshold(threshold)
    seq = sequence.upper()
    if len(seq) < motif.length:
        _checked_bounds(motif)
        return []
    encoded = ragged_from_list([encode_sequence(seq)], dtype=np.int8)
    seq_id = seq_id or "seq0"
    return _scan_encoded(motif, [seq_id], [seq], encoded, rel_threshold)[seq_id]


def scan_sequences(sequences: SequenceSet, motif: Motif, threshold: Threshold) -> Dict[str, List[Site]]:
    """Scan a whole sequence set with one motif in a single kernel call per strand."""
    rel_threshold = parse_threshold(threshold)
    seqs = [sequences.get(seq_id) for seq_id in sequences.ids]
    hits = _scan_encoded(motif, sequences.ids, seqs, sequences.encoded, rel_threshold)
    logger.debug(f"{motif.id}: {sum(len(v) for v in hits.values())} raw site(s) in {len(sequences)} sequence(s)")
    return hits

"""
Enrichment statistics comparing a target count table with a background one.

- :func:`fisher_test` one-tailed Fisher exact test on sequences with / without hits,
- :func:`zscore_test` normal approximation on the rate of TFBS nucleotides per search length,
- :func:`ks_test` two-sample Kolmogorov-Smirnov test on site to peak-max distances.

Scores are reported so that larger means more significant; ``None`` marks an
undefined statistic.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import numpy as np
from scipy.special import logsumexp
from scipy.stats import hypergeom, ks_2samp, norm

from opossum.counts import Counts, Values
from opossum.exceptions import PreconditionError, ResultSetError

logger = logging.getLogger(__name__)

ZERO_BG_PSEUDO_SITES = 0.5


@dataclass(frozen=True)
class FisherResult:
    id: str
    t_hits: int
    t_no_hits: int
    bg_hits: int
    bg_no_hits: int
    score: Optional[float]
    p_value: Optional[float]


@dataclass(frozen=True)
class ZscoreResult:
    id: str
    t_hits: int
    bg_hits: int
    t_rate: float
    bg_rate: float
    t_gene_hits: int
    bg_gene_hits: int
    zscore: Optional[float]
    p_value: Optional[float]


@dataclass(frozen=True)
class KSResult:
    id: str
    score: Optional[float]
    p_value: Optional[float]


def _check_same_tfs(bg_counts: Counts, t_counts: Counts, context: str) -> None:
    if bg_counts.tf_ids != t_counts.tf_ids:
        mismatched = sorted(set(bg_counts.tf_ids) ^ set(t_counts.tf_ids))
        raise ResultSetError(context, mismatched)


def fisher_log_pvalue(t_hits: int, t_no_hits: int, bg_hits: int, bg_no_hits: int) -> float:
    """Natural log of the one-tailed Fisher p-value for target over-representation.

    The 2x2 table is ``[[t_no_hits, bg_no_hits], [t_hits, bg_hits]]`` and the
    alternative is an odds ratio below one, i.e. the lower tail of the
    hypergeometric distribution of ``t_no_hits``. The tail is summed in log
    space so that extreme tables do not collapse to ``p = 0``.
    """
    total = t_hits + t_no_hits + bg_hits + bg_no_hits
    no_hits = t_no_hits + bg_no_hits
    n_target = t_hits + t_no_hits

    lowest = max(0, n_target - (total - no_hits))
    support = np.arange(lowest, t_no_hits + 1)
    log_terms = hypergeom.logpmf(support, total, no_hits, n_target)
    return float(min(0.0, logsumexp(log_terms)))


def fisher_test(bg_counts: Counts, t_counts: Counts) -> Dict[str, FisherResult]:
    """Fisher exact test per TF on the number of sequences with and without hits."""
    _check_same_tfs(bg_counts, t_counts, "Fisher test (target vs. background TFs)")

    results = {}
    for tf_id in t_counts.tf_ids:
        t_hits = t_counts.gene_hits(tf_id)
        t_no_hits = t_counts.gene_no_hits(tf_id)
        bg_hits = bg_counts.gene_hits(tf_id)
        bg_no_hits = bg_counts.gene_no_hits(tf_id)

        log_p = fisher_log_pvalue(t_hits, t_no_hits, bg_hits, bg_no_hits)
        results[tf_id] = FisherResult(
            id=tf_id,
            t_hits=t_hits,
            t_no_hits=t_no_hits,
            bg_hits=bg_hits,
            bg_no_hits=bg_no_hits,
            score=max(0.0, -log_p),
            p_value=math.exp(log_p),
        )
    return results


def zscore(t_nucleotides: float, bg_nucleotides: float, t_length: int, bg_length: int, unit: float = 1.0):
    """Z-score of the target TFBS nucleotide count against the background rate.

    Returns ``(z, p_value)`` where ``p_value`` is the upper-tail normal
    probability. With no background nucleotides but some target ones the
    background count is replaced by ``ZERO_BG_PSEUDO_SITES * unit`` so the
    score stays finite. ``(None, None)`` is returned when the variance is zero.
    """
    if bg_length <= 0 or t_length <= 0:
        raise PreconditionError(
            f"Search region length must be positive (target={t_length}, background={bg_length})"
        )

    if bg_nucleotides == 0:
        if t_nucleotides == 0:
            return None, None
        bg_nucleotides = ZERO_BG_PSEUDO_SITES * unit

    bg_rate = bg_nucleotides / bg_length
    ratio = t_length / bg_length

    variance = t_length * bg_rate * (1.0 - bg_rate)
    if variance <= 0:
        return None, None

    sd = math.sqrt(variance)
    expected = bg_nucleotides * ratio
    z = (t_nucleotides - expected - 0.5) / sd
    return z, float(norm.sf(z))


def zscore_test(
    bg_counts: Counts,
    t_counts: Counts,
    bg_length: int,
    t_length: int,
    widths: Optional[Mapping[str, int]] = None,
) -> Dict[str, ZscoreResult]:
    """Z-score per TF (or cluster) on TFBS nucleotide rates.

    With ``widths`` (single TF analyses) covered nucleotides are
    ``width * hits``. Without it (cluster analyses) the summed lengths of the
    merged cluster sites are used, capped at the search region length.
    """
    if bg_length <= 0 or t_length <= 0:
        raise PreconditionError(
            f"Search region length must be positive (target={t_length}, background={bg_length})"
        )
    _check_same_tfs(bg_counts, t_counts, "Z-score test (target vs. background TFs)")

    results = {}
    for tf_id in t_counts.tf_ids:
        t_hits = t_counts.tfbs_count(tf_id)
        bg_hits = bg_counts.tfbs_count(tf_id)

        if widths is not None:
            unit = widths[tf_id]
            t_nuc = unit * t_hits
            bg_nuc = unit * bg_hits
        else:
            unit = 1
            t_nuc = min(t_counts.tfbs_length(tf_id), t_length)
            bg_nuc = min(bg_counts.tfbs_length(tf_id), bg_length)

        z, p_value = zscore(t_nuc, bg_nuc, t_length, bg_length, unit=unit)
        if z is None:
            logger.debug(f"{tf_id}: Z-score undefined (target={t_nuc}, background={bg_nuc} nucleotides)")

        results[tf_id] = ZscoreResult(
            id=tf_id,
            t_hits=t_hits,
            bg_hits=bg_hits,
            t_rate=t_nuc / t_length,
            bg_rate=bg_nuc / bg_length,
            t_gene_hits=t_counts.gene_hits(tf_id),
            bg_gene_hits=bg_counts.gene_hits(tf_id),
            zscore=z,
            p_value=p_value,
        )
    return results


def ks_test(bg_values: Values, t_values: Values) -> Dict[str, KSResult]:
    """Two-sample KS test per TF on site to peak-max distances."""
    results = {}
    for tf_id in t_values.tf_ids:
        t_dist = t_values.all_values(tf_id)
        bg_dist = bg_values.all_values(tf_id) if tf_id in bg_values.tf_ids else np.empty(0)

        if t_dist.size == 0 or bg_dist.size == 0:
            results[tf_id] = KSResult(id=tf_id, score=None, p_value=None)
            continue

        p_value = float(ks_2samp(t_dist, bg_dist).pvalue)
        score = -math.log(p_value) if p_value > 0 else math.inf
        results[tf_id] = KSResult(id=tf_id, score=max(0.0, score), p_value=p_value)
    return results

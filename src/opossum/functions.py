import numpy as np
from numba import njit, prange

from opossum.ragged import RaggedData

BG_PROB = 0.25


def pcm_to_pfm(pcm):
    """Convert Position Count Matrix to Position Frequency Matrix.

    Each column receives a pseudocount of ``sqrt(N)`` spread evenly over the
    four bases, where ``N`` is the number of sites in that column.
    """
    number_of_sites = pcm.sum(axis=0)
    pseudo = np.sqrt(number_of_sites)
    pfm = (pcm + BG_PROB * pseudo) / (number_of_sites + pseudo)
    return pfm


def pfm_to_pwm(pfm):
    """Convert Position Frequency Matrix to Position Weight Matrix."""

    pwm = np.log2(pfm / BG_PROB)
    return pwm


def extend_with_n_row(pwm: np.ndarray) -> np.ndarray:
    """Append a fifth row scoring ambiguous bases with the column minimum."""
    return np.concatenate((pwm, np.min(pwm, axis=0, keepdims=True)), axis=0)


def score_bounds(pwm: np.ndarray) -> tuple[float, float]:
    """Return theoretical minimum and maximum scores of a 4xL weight matrix."""
    acgt = pwm[:4]
    minimum = 0.0
    maximum = 0.0
    for col in range(acgt.shape[1]):
        minimum += float(acgt[:, col].min())
        maximum += float(acgt[:, col].max())
    return minimum, maximum


def information_content(pcm: np.ndarray) -> float:
    """Total information content (bits) of a count or frequency matrix."""
    totals = pcm.sum(axis=0)
    total_ic = 0.0
    for col in range(pcm.shape[1]):
        if totals[col] <= 0:
            continue
        probs = pcm[:4, col] / totals[col]
        probs = probs[probs > 0]
        total_ic += 2.0 + float(np.sum(probs * np.log2(probs)))
    return total_ic


def matrix_gc_content(pcm: np.ndarray) -> float:
    """Fraction of C and G in a count or frequency matrix."""
    total = float(pcm[:4].sum())
    if total <= 0:
        return 0.0
    return float(pcm[1:3].sum()) / total


def count_gc(sequences: RaggedData) -> tuple[int, int]:
    """Return (number of G/C, number of A/C/G/T) over a sequence set."""
    counts = np.bincount(sequences.data, minlength=5)
    return int(counts[1] + counts[2]), int(counts[:4].sum())


@njit
def score_site(num_site, matrix):
    """Sum of matrix weights for one encoded site."""
    score = 0.0
    for j in range(num_site.shape[0]):
        score += matrix[num_site[j], j]
    return score


@njit(inline="always")
def _fill_rc_buffer(data, start, length, buffer):
    """Fill a buffer with reverse-complement values without allocations."""
    rc_table = np.array([3, 2, 1, 0, 4], dtype=np.int8)
    for j in range(length):
        val = data[start + length - 1 - j]
        buffer[j] = rc_table[val]


@njit(parallel=True, cache=True)
def _batch_all_scores_jit(data, offsets, matrix, is_revcomp):
    """Compute PWM scores for every window of every sequence."""
    n_seq = len(offsets) - 1
    m = matrix.shape[-1]

    new_offsets = np.zeros(n_seq + 1, dtype=np.int64)
    for i in range(n_seq):
        seq_len = offsets[i + 1] - offsets[i]
        if seq_len >= m:
            new_offsets[i + 1] = seq_len - m + 1

    for i in range(n_seq):
        new_offsets[i + 1] += new_offsets[i]

    total_scores = new_offsets[n_seq]
    results = np.zeros(total_scores, dtype=np.float64)

    for i in prange(n_seq):
        start = offsets[i]
        out_start = new_offsets[i]
        n_scores = new_offsets[i + 1] - out_start

        if n_scores > 0:
            site_buffer = np.empty(m, dtype=data.dtype)

            for k in range(n_scores):
                if not is_revcomp:
                    num_site = data[start + k : start + k + m]
                    results[out_start + k] = score_site(num_site, matrix)
                else:
                    _fill_rc_buffer(data, start + k, m, site_buffer)
                    results[out_start + k] = score_site(site_buffer, matrix)

    return results, new_offsets


def batch_all_scores(sequences: RaggedData, matrix: np.ndarray, is_revcomp: bool = False) -> RaggedData:
    """Compute window scores for all sequences in RaggedData.

    ``matrix`` is a 5xL weight matrix (rows A, C, G, T, N). Score ``k`` of a
    sequence belongs to the window starting at offset ``k``; on the reverse
    strand it is the score of the reverse complement of that same window.
    """
    data, offsets = _batch_all_scores_jit(sequences.data, sequences.offsets, matrix, is_revcomp)
    return RaggedData(data, offsets)

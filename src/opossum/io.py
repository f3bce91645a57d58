from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from opossum.counts import Counts
from opossum.exceptions import FileFormatError, InputValidationError
from opossum.models import Motif, SequenceSet, Site, SitePair, TFCluster, TFClusterSet, TFSet
from opossum.results import EnrichmentResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

RESULTS_COLUMNS = [
    "TF",
    "ID",
    "Class",
    "Family",
    "Tax Group",
    "IC",
    "GC Content",
    "Target seq hits",
    "Target seq non-hits",
    "Background seq hits",
    "Background seq non-hits",
    "Target TFBS hits",
    "Target TFBS nucleotide rate",
    "Background TFBS hits",
    "Background TFBS nucleotide rate",
    "Z-score",
    "Fisher score",
    "KS score",
]

_BRACKET_ROW = re.compile(r"^\s*[ACGT]\s*\[\s*(.*?)\s*\]")
_NUMERIC_ROW = re.compile(r"^\s*-?\d")
_DECIMAL = re.compile(r"\d*\.\d+")


def read_fasta(path: PathLike, name: str = "sequence") -> SequenceSet:
    """Read a FASTA file into a :class:`SequenceSet` (headers become display ids)."""

    headers: List[str] = []
    sequences: List[str] = []

    with open(path, "r") as handle:
        current: List[str] = []
        header: Optional[str] = None
        for line in handle:
            line = line.strip()
            if not line:
                continue
            if line.startswith(">"):
                if header is not None:
                    headers.append(header)
                    sequences.append("".join(current))
                header = line[1:].strip()
                current = []
            else:
                if header is None:
                    raise FileFormatError(f"{path}: sequence data before the first FASTA header")
                current.append(line)

        if header is not None:
            headers.append(header)
            sequences.append("".join(current))

    logger.info(f"Read {len(sequences)} {name} sequence(s) from {path}")
    return SequenceSet(sequences, display_ids=headers, name=name)


def read_matrices(path: PathLike) -> TFSet:
    """Read TF profile matrices.

    Each matrix is an optional ``>name`` header followed by four rows, either
    ``A [ 1 2 3 ]`` style or bare numbers, in A, C, G, T order. Matrices
    written with decimals are taken as log-odds weights (PWM), integer ones as
    counts (PFM). A header of the form ``>ID NAME`` gives both the id and the
    name; otherwise ids are ``matrix1 .. matrixN``.
    """
    motifs = []
    name = ""
    motif_id = ""
    rows: List[str] = []

    with open(path) as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.rstrip("\n")
            if not line.strip():
                continue

            if line.startswith(">"):
                if rows:
                    raise FileFormatError(f"{path}:{line_no}: header inside a matrix with only {len(rows)} row(s)")
                parts = line[1:].split()
                motif_id, name = (parts[0], " ".join(parts[1:])) if len(parts) > 1 else ("", parts[0] if parts else "")
                continue

            match = _BRACKET_ROW.match(line)
            if match:
                rows.append(match.group(1))
            elif _NUMERIC_ROW.match(line):
                rows.append(line.strip())
            else:
                continue

            if len(rows) == 4:
                motif_id = motif_id or f"matrix{len(motifs) + 1}"
                motifs.append(_motif_from_rows(path, motif_id, name or motif_id, rows))
                rows, name, motif_id = [], "", ""

    if rows:
        raise FileFormatError(f"{path}: incomplete matrix at end of file ({len(rows)} of 4 rows)")
    if not motifs:
        raise FileFormatError(f"No matrices found in {path}")

    logger.info(f"Read {len(motifs)} matri{'x' if len(motifs) == 1 else 'ces'} from {path}")
    return TFSet(motifs)


def _motif_from_rows(path, motif_id: str, name: str, rows: List[str]) -> Motif:
    try:
        values = [[float(x) for x in row.replace(",", " ").split()] for row in rows]
    except ValueError as e:
        raise FileFormatError(f"{path}: matrix {name}: {e}") from None
    if len({len(row) for row in values}) != 1:
        raise FileFormatError(f"{path}: matrix {name} has rows of different lengths")

    matrix_type = "PWM" if any(_DECIMAL.search(row) for row in rows) else "PFM"
    return Motif(id=motif_id, name=name, matrix=np.array(values), matrix_type=matrix_type)


def read_meme(path: PathLike, default_nsites: int = 20) -> TFSet:
    """Read all motifs of a MEME formatted file as count matrices.

    Letter probabilities are scaled by the motif's ``nsites`` (or
    ``default_nsites`` when absent) so that the count pseudocount applies.
    """
    motifs = []

    with open(path) as handle:
        line = handle.readline()
        while line:
            if line.startswith("MOTIF"):
                parts = line.strip().split()
                motif_id = parts[1]
                name = parts[2] if len(parts) > 2 else parts[1]

                header_line = handle.readline()
                while header_line and "letter-probability" not in header_line:
                    header_line = handle.readline()
                header = header_line.strip().split()

                try:
                    length = int(header[header.index("w=") + 1])
                except (ValueError, IndexError):
                    raise FileFormatError(f"{path}: motif {motif_id} has no width (w=)") from None
                try:
                    nsites = float(header[header.index("nsites=") + 1])
                except (ValueError, IndexError):
                    nsites = float(default_nsites)

                matrix = []
                while len(matrix) < length:
                    row = handle.readline()
                    if not row:
                        raise FileFormatError(f"{path}: motif {motif_id} truncated")
                    row = row.strip().split()
                    if row:
                        matrix.append(list(map(float, row)))

                motifs.append(
                    Motif(id=motif_id, name=name, matrix=np.array(matrix).T * nsites, matrix_type="PFM")
                )

            line = handle.readline()

    if not motifs:
        raise FileFormatError(f"No motifs found in {path}")

    return TFSet(motifs)


def read_clusters(path: PathLike, tf_set: Optional[TFSet] = None) -> TFClusterSet:
    """Read a TF cluster table.

    Tab separated columns: cluster id, name, class, family and a comma
    separated list of member TF ids. Lines starting with ``#`` are skipped.
    """
    try:
        table = pd.read_csv(
            path,
            sep="\t",
            comment="#",
            header=None,
            names=["id", "name", "tf_class", "family", "tf_ids"],
            dtype=str,
            keep_default_na=False,
        )
    except pd.errors.EmptyDataError:
        raise FileFormatError(f"No TF clusters found in {path}") from None
    if table.empty:
        raise FileFormatError(f"No TF clusters found in {path}")

    clusters = []
    for row in table.itertuples(index=False):
        members = row.tf_ids if isinstance(row.tf_ids, str) else ""
        tf_ids = tuple(t.strip() for t in members.split(",") if t.strip())
        if not tf_ids:
            raise FileFormatError(f"{path}: cluster {row.id} lists no TF ids")
        clusters.append(
            TFCluster(
                id=row.id,
                name=row.name or row.id,
                tf_ids=tf_ids,
                tf_class=row.tf_class or None,
                family=row.family or None,
            )
        )

    cluster_set = TFClusterSet(clusters)
    if tf_set is not None:
        cluster_set.validate_members(tf_set)
    return cluster_set


def parse_id_text(text: str) -> List[str]:
    """Split whitespace or comma separated ids, dropping duplicates but keeping order."""
    return list(dict.fromkeys(token for token in re.split(r"[\s,]+", text) if token))


def read_ids(path: PathLike) -> List[str]:
    with open(path) as handle:
        return parse_id_text(handle.read())


def read_peak_positions(path: PathLike, seq_ids: Sequence[str]) -> Dict[str, int]:
    """Read one peak maximum position per sequence, in sequence order."""
    with open(path) as handle:
        tokens = [token for token in re.split(r"[\s,]+", handle.read()) if token]

    if len(tokens) != len(seq_ids):
        raise InputValidationError(
            f"Number of max peak positions ({len(tokens)}) does not match the number of sequences ({len(seq_ids)})"
        )
    try:
        return {seq_id: int(token) for seq_id, token in zip(seq_ids, tokens)}
    except ValueError as e:
        raise FileFormatError(f"{path}: {e}") from None


def read_counts(
    path: PathLike, seq_ids: Optional[Sequence[str]] = None, tf_ids: Optional[Sequence[str]] = None
) -> Counts:
    """Read a gene/TF count table: ``gene_id  tf_id  count  [nucleotides]`` (tab separated)."""
    try:
        table = pd.read_csv(path, sep="\t", comment="#", header=None, dtype={0: str, 1: str})
    except pd.errors.EmptyDataError:
        raise FileFormatError(f"No counts found in {path}") from None
    if table.shape[1] < 3:
        raise FileFormatError(f"{path}: count table needs at least 3 columns, got {table.shape[1]}")
    if seq_ids is not None:
        table = table[table[0].isin(seq_ids)]
    if tf_ids is not None:
        table = table[table[1].isin(tf_ids)]
    rows = table.itertuples(index=False, name=None)
    return Counts.from_rows(rows, seq_ids=seq_ids, tf_ids=tf_ids)


def _fmt(value, spec: str) -> str:
    if value is None:
        return "NA"
    return format(value, spec)


def results_to_frame(results: Iterable[EnrichmentResult]) -> pd.DataFrame:
    """Render results as the tab-delimited report table ("NA" for undefined)."""
    records = []
    for result in results:
        records.append(
            [
                result.name or result.id,
                result.id,
                result.tf_class or "NA",
                result.family or "NA",
                result.tax_group or "NA",
                _fmt(result.ic, ".3f"),
                _fmt(result.gc_content, ".3f"),
                result.t_gene_hits or 0,
                result.t_gene_no_hits or 0,
                result.bg_gene_hits or 0,
                result.bg_gene_no_hits or 0,
                result.t_hits or 0,
                _fmt(result.t_rate, ".3g"),
                result.bg_hits or 0,
                _fmt(result.bg_rate, ".3g"),
                _fmt(result.zscore, ".3f"),
                _fmt(result.fisher_score, ".3f"),
                _fmt(result.ks_score, ".3f"),
            ]
        )
    return pd.DataFrame(records, columns=RESULTS_COLUMNS)


def write_results(path: PathLike, results: Iterable[EnrichmentResult]) -> None:
    """Write the ranked results table."""
    frame = results_to_frame(results)
    frame.to_csv(path, sep="\t", index=False)
    logger.info(f"Wrote {len(frame)} result(s) to {path}")


def _site_fields(site: Site) -> str:
    strand = "+" if site.strand == 1 else "-"
    return f"{site.start} : {site.end} : {strand} : {site.score:.3f} : {site.rel_score * 100:.1f}% : {site.seq}"


def write_site_details(
    path: PathLike,
    tf_id: str,
    details: Mapping[str, Sequence[Union[Site, SitePair]]],
    display_ids: Optional[Mapping[str, str]] = None,
) -> None:
    """Write the binding sites (or site pairs) of one TF, grouped by sequence."""
    display_ids = display_ids or {}
    with open(path, "w") as out:
        out.write(f"{tf_id}\n\n")
        for seq_id, items in details.items():
            if not items:
                continue
            out.write(f"{display_ids.get(seq_id, seq_id)}\n")
            for item in items:
                if isinstance(item, SitePair):
                    out.write(f"    {_site_fields(item.anchor)} || {_site_fields(item.site)} : {item.distance}\n")
                else:
                    out.write(f"    {_site_fields(item)}\n")
            out.write("\n")

"""
Analysis pipeline for TFBS over-representation.

The :class:`Pipeline` runs the four sequence-based analysis types and the
gene-based analysis on pre-computed counts:

- ``ssa``   single TF site analysis,
- ``tca``   TF cluster analysis,
- ``acsa``  anchored combination site analysis (TF pairs),
- ``actca`` anchored TF cluster analysis (cluster pairs).

Every sequence-based analysis follows the same path: scan target and
background with each TF (in parallel over TFs), resolve overlapping hits,
tally the hits, then compute Fisher and Z-score statistics (plus KS for
``ssa``/``tca``). A TF that cannot be scanned is reported in
``failed_ids`` and keeps a result row with undefined statistics.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from joblib import Parallel, delayed

from opossum.anchored import anchored_pairs, find_cluster_sitepairs
from opossum.counts import Counts, compute_peak_distances, counts_from_sites
from opossum.exceptions import EmptyInputError, InputValidationError, MotifError
from opossum.models import Motif, SequenceSet, Site, TFClusterSet, TFSet
from opossum.overlap import filter_overlapping_sites, merge_cluster_sites
from opossum.results import CombinedResultSet
from opossum.scanner import Threshold, parse_threshold, scan_sequences
from opossum.stats import fisher_test, ks_test, zscore_test

SiteStreams = Dict[str, Dict[str, List[Site]]]


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one analysis run.

    Attributes
    ----------
    analysis_type : str
        ``ssa``, ``tca``, ``acsa``, ``actca`` or ``gene``
    results : CombinedResultSet
        One row per TF or cluster, failed ids included
    t_counts, bg_counts : Counts
        Target and background count tables of the successfully analysed ids
    details : dict
        Target sites (or site pairs) per id: ``{id: {seq_id: [...]}}``
    failed_ids : list
        Ids whose search failed; their statistics are undefined
    params : dict
        Search parameters and sequence set summaries
    display_ids : dict
        Target display id (FASTA header) per sequence id
    """

    analysis_type: str
    results: CombinedResultSet
    t_counts: Counts
    bg_counts: Counts
    details: Dict[str, Dict[str, list]] = field(default_factory=dict)
    failed_ids: List[str] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)
    display_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_ids)


def _search_motif(motif: Motif, sequence_sets: Sequence[SequenceSet], threshold: float):
    """Scan every sequence set with one motif (joblib worker)."""
    try:
        return motif.id, [scan_sequences(sequences, motif, threshold) for sequences in sequence_sets], None
    except (ValueError, ArithmeticError) as e:
        return motif.id, None, str(e)


class Pipeline:
    """
    Orchestrates searching, counting and scoring for one target/background pair.

    Args:
        n_jobs: Number of parallel scan jobs over TFs (joblib, -1 for all cores)
        logger: Logger to report progress to
    """

    def __init__(self, n_jobs: int = 1, logger: Optional[logging.Logger] = None):
        self.n_jobs = n_jobs
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # searching
    # ------------------------------------------------------------------

    def search(
        self, tf_set: TFSet, sequence_sets: Sequence[SequenceSet], threshold: float
    ) -> Tuple[Dict[str, List[Dict[str, List[Site]]]], List[str]]:
        """Scan each sequence set with each TF.

        Returns ``({tf_id: [hits of set 0, hits of set 1, ...]}, failed_ids)``
        where hits are ``{seq_id: [Site]}`` before overlap resolution.
        """
        if len(tf_set) == 0:
            raise EmptyInputError("TF set")

        self.logger.info(f"Searching {len(sequence_sets)} sequence set(s) with {len(tf_set)} TF(s)")
        outputs = Parallel(n_jobs=self.n_jobs, backend="loky")(
            delayed(_search_motif)(motif, sequence_sets, threshold) for motif in tf_set
        )

        hits = {}
        failed = []
        for tf_id, tf_hits, error in outputs:
            if error is not None:
                self.logger.warning(f"Search failed for {tf_id}, excluding it from the analysis: {error}")
                failed.append(tf_id)
            else:
                hits[tf_id] = tf_hits
        return hits, failed

    @staticmethod
    def _resolve(hits: Mapping[str, List[Site]]) -> Dict[str, List[Site]]:
        return {seq_id: filter_overlapping_sites(sites) for seq_id, sites in hits.items()}

    @staticmethod
    def _cluster_hits(cluster_tf_ids: Sequence[str], raw: Mapping[str, List[Dict[str, List[Site]]]], set_index: int):
        """Union of the member TFs' raw hits per sequence for one sequence set."""
        union: Dict[str, List[Site]] = {}
        for tf_id in cluster_tf_ids:
            if tf_id not in raw:
                continue
            for seq_id, sites in raw[tf_id][set_index].items():
                union.setdefault(seq_id, []).extend(sites)
        return union

    def _cluster_members(self, tf_set: TFSet, cluster_set: TFClusterSet) -> TFSet:
        if len(cluster_set) == 0:
            raise EmptyInputError("TF cluster set")
        cluster_set.validate_members(tf_set)
        member_ids = []
        for cluster in cluster_set:
            member_ids.extend(tf_id for tf_id in cluster.tf_ids if tf_id in tf_set)
        return tf_set.subset(dict.fromkeys(member_ids))

    def _failed_clusters(self, cluster_set: TFClusterSet, failed_tfs: Sequence[str]) -> List[str]:
        failed = [cluster.id for cluster in cluster_set if any(tf_id in failed_tfs for tf_id in cluster.tf_ids)]
        for cluster_id in failed:
            self.logger.warning(f"Cluster {cluster_id} has a member TF that failed, excluding it from the analysis")
        return failed

    # ------------------------------------------------------------------
    # scoring
    # ------------------------------------------------------------------

    def analyze_counts(
        self,
        t_counts: Counts,
        bg_counts: Counts,
        t_length: int,
        bg_length: int,
        widths: Optional[Mapping[str, int]] = None,
        tf_set: Optional[TFSet] = None,
        cluster_set: Optional[TFClusterSet] = None,
        t_values=None,
        bg_values=None,
        order: Optional[Sequence[str]] = None,
        failed_ids: Sequence[str] = (),
    ) -> CombinedResultSet:
        """Compute Fisher, Z-score and (with values) KS statistics and combine them."""
        self.logger.info(f"Computing enrichment statistics for {len(t_counts.tf_ids)} id(s)")
        fisher = fisher_test(bg_counts, t_counts)
        zscores = zscore_test(bg_counts, t_counts, bg_length, t_length, widths=widths)
        ks = ks_test(bg_values, t_values) if t_values is not None and bg_values is not None else None
        return CombinedResultSet.combine(
            fisher, zscores, ks, tf_set=tf_set, cluster_set=cluster_set, order=order, failed_ids=failed_ids
        )

    def _params(self, analysis_type: str, target: SequenceSet, background: SequenceSet, threshold: float, **extra):
        params = {
            "analysis_type": analysis_type,
            "threshold": threshold,
            "t_num_seqs": len(target),
            "bg_num_seqs": len(background),
            "t_seq_length": target.total_length(),
            "bg_seq_length": background.total_length(),
            "t_gc_content": target.gc_content(),
            "bg_gc_content": background.gc_content(),
        }
        params.update(extra)
        return params

    # ------------------------------------------------------------------
    # analysis types
    # ------------------------------------------------------------------

    def run_ssa(
        self,
        target: SequenceSet,
        background: SequenceSet,
        tf_set: TFSet,
        threshold: Threshold = "80%",
        t_peak_positions: Optional[Mapping[str, int]] = None,
        bg_peak_positions: Optional[Mapping[str, int]] = None,
        with_ks: bool = True,
    ) -> AnalysisResult:
        """Single TF over-representation analysis."""
        rel_threshold = parse_threshold(threshold)
        params = self._params("ssa", target, background, rel_threshold)

        raw, failed = self.search(tf_set, [target, background], rel_threshold)
        ok_ids = [tf_id for tf_id in tf_set.ids() if tf_id in raw]

        t_sites = {tf_id: self._resolve(raw[tf_id][0]) for tf_id in ok_ids}
        bg_sites = {tf_id: self._resolve(raw[tf_id][1]) for tf_id in ok_ids}

        t_counts = counts_from_sites(target.ids, ok_ids, t_sites)
        bg_counts = counts_from_sites(background.ids, ok_ids, bg_sites)

        t_values = bg_values = None
        if with_ks:
            t_values = compute_peak_distances(target, t_sites, t_peak_positions)
            bg_values = compute_peak_distances(background, bg_sites, bg_peak_positions)

        results = self.analyze_counts(
            t_counts,
            bg_counts,
            params["t_seq_length"],
            params["bg_seq_length"],
            widths={tf_id: tf_set.get(tf_id).length for tf_id in ok_ids},
            tf_set=tf_set,
            t_values=t_values,
            bg_values=bg_values,
            order=tf_set.ids(),
            failed_ids=failed,
        )
        self.logger.info(f"SSA finished: {len(ok_ids)} TF(s) analysed, {len(failed)} failed")
        return AnalysisResult("ssa", results, t_counts, bg_counts, t_sites, failed, params, target.display_ids)

    def run_tca(
        self,
        target: SequenceSet,
        background: SequenceSet,
        tf_set: TFSet,
        cluster_set: TFClusterSet,
        threshold: Threshold = "80%",
        t_peak_positions: Optional[Mapping[str, int]] = None,
        bg_peak_positions: Optional[Mapping[str, int]] = None,
        with_ks: bool = True,
        merge_adjacent: bool = False,
    ) -> AnalysisResult:
        """TF cluster over-representation analysis on merged member hits."""
        rel_threshold = parse_threshold(threshold)
        params = self._params("tca", target, background, rel_threshold)

        members = self._cluster_members(tf_set, cluster_set)
        raw, failed_tfs = self.search(members, [target, background], rel_threshold)
        failed = self._failed_clusters(cluster_set, failed_tfs)
        ok_ids = [cluster_id for cluster_id in cluster_set.ids() if cluster_id not in failed]

        streams: List[SiteStreams] = [{}, {}]
        for cluster_id in ok_ids:
            cluster = cluster_set.get(cluster_id)
            for set_index in (0, 1):
                union = self._cluster_hits(cluster.tf_ids, raw, set_index)
                streams[set_index][cluster_id] = {
                    seq_id: merge_cluster_sites(sites, cluster_id, merge_adjacent=merge_adjacent)
                    for seq_id, sites in union.items()
                }
        t_sites, bg_sites = streams

        t_counts = counts_from_sites(target.ids, ok_ids, t_sites, with_lengths=True)
        bg_counts = counts_from_sites(background.ids, ok_ids, bg_sites, with_lengths=True)

        t_values = bg_values = None
        if with_ks:
            t_values = compute_peak_distances(target, t_sites, t_peak_positions)
            bg_values = compute_peak_distances(background, bg_sites, bg_peak_positions)

        results = self.analyze_counts(
            t_counts,
            bg_counts,
            params["t_seq_length"],
            params["bg_seq_length"],
            cluster_set=cluster_set,
            t_values=t_values,
            bg_values=bg_values,
            order=cluster_set.ids(),
            failed_ids=failed,
        )
        self.logger.info(f"TCA finished: {len(ok_ids)} cluster(s) analysed, {len(failed)} failed")
        return AnalysisResult("tca", results, t_counts, bg_counts, t_sites, failed, params, target.display_ids)

    def run_acsa(
        self,
        target: SequenceSet,
        background: SequenceSet,
        tf_set: TFSet,
        anchor_id: str,
        max_distance: int,
        threshold: Threshold = "80%",
    ) -> AnalysisResult:
        """Anchored analysis: over-representation of TF sites near the anchor TF's sites."""
        return self.run_multi_acsa(target, background, tf_set, [anchor_id], max_distance, threshold)[anchor_id]

    def run_multi_acsa(
        self,
        target: SequenceSet,
        background: SequenceSet,
        tf_set: TFSet,
        anchor_ids: Sequence[str],
        max_distance: int,
        threshold: Threshold = "80%",
    ) -> Dict[str, AnalysisResult]:
        """Anchored analysis for several anchor TFs, sharing one search."""
        rel_threshold = parse_threshold(threshold)
        if max_distance is None or max_distance < 0:
            raise InputValidationError(f"Maximum inter-site distance must be >= 0, got {max_distance!r}")
        if not anchor_ids:
            raise EmptyInputError("anchor TF list")
        for anchor_id in anchor_ids:
            tf_set.get(anchor_id)

        raw, failed = self.search(tf_set, [target, background], rel_threshold)
        for anchor_id in anchor_ids:
            if anchor_id in failed:
                raise MotifError(anchor_id, "anchor TF could not be searched")

        ok_ids = [tf_id for tf_id in tf_set.ids() if tf_id in raw]
        resolved = [{tf_id: self._resolve(raw[tf_id][i]) for tf_id in ok_ids} for i in (0, 1)]
        widths = {tf_id: tf_set.get(tf_id).length for tf_id in ok_ids}

        analyses = {}
        for anchor_id in anchor_ids:
            params = self._params(
                "acsa", target, background, rel_threshold, anchor_id=anchor_id, max_distance=max_distance
            )
            t_pairs = anchored_pairs(resolved[0][anchor_id], resolved[0], max_distance)
            bg_pairs = anchored_pairs(resolved[1][anchor_id], resolved[1], max_distance)

            t_counts = counts_from_sites(target.ids, ok_ids, t_pairs)
            bg_counts = counts_from_sites(background.ids, ok_ids, bg_pairs)

            results = self.analyze_counts(
                t_counts,
                bg_counts,
                params["t_seq_length"],
                params["bg_seq_length"],
                widths=widths,
                tf_set=tf_set,
                order=tf_set.ids(),
                failed_ids=failed,
            )
            self.logger.info(f"ACSA with anchor {anchor_id} finished: {len(ok_ids)} TF(s), {len(failed)} failed")
            analyses[anchor_id] = AnalysisResult(
                "acsa", results, t_counts, bg_counts, t_pairs, failed, params, target.display_ids
            )
        return analyses

    def run_actca(
        self,
        target: SequenceSet,
        background: SequenceSet,
        tf_set: TFSet,
        cluster_set: TFClusterSet,
        anchor_cluster_id: str,
        max_distance: int,
        threshold: Threshold = "80%",
    ) -> AnalysisResult:
        """Anchored cluster analysis: clusters with merged hits near the anchor cluster's hits."""
        rel_threshold = parse_threshold(threshold)
        if max_distance is None or max_distance < 0:
            raise InputValidationError(f"Maximum inter-site distance must be >= 0, got {max_distance!r}")
        cluster_set.get(anchor_cluster_id)
        params = self._params(
            "actca",
            target,
            background,
            rel_threshold,
            anchor_id=anchor_cluster_id,
            max_distance=max_distance,
        )

        members = self._cluster_members(tf_set, cluster_set)
        raw, failed_tfs = self.search(members, [target, background], rel_threshold)
        failed = self._failed_clusters(cluster_set, failed_tfs)
        if anchor_cluster_id in failed:
            raise MotifError(anchor_cluster_id, "anchor cluster could not be searched")
        ok_ids = [cluster_id for cluster_id in cluster_set.ids() if cluster_id not in failed]

        anchor_tfs = cluster_set.get(anchor_cluster_id).tf_ids
        pair_streams: List[Dict[str, Dict[str, list]]] = [{}, {}]
        for set_index, sequences in enumerate((target, background)):
            anchor_union = self._cluster_hits(anchor_tfs, raw, set_index)
            for cluster_id in ok_ids:
                union = self._cluster_hits(cluster_set.get(cluster_id).tf_ids, raw, set_index)
                per_seq = {}
                for seq_id in sequences.ids:
                    if not anchor_union.get(seq_id) or not union.get(seq_id):
                        continue
                    pairs = find_cluster_sitepairs(
                        anchor_union[seq_id], anchor_cluster_id, union[seq_id], cluster_id, max_distance
                    )
                    if pairs:
                        per_seq[seq_id] = pairs
                pair_streams[set_index][cluster_id] = per_seq
        t_pairs, bg_pairs = pair_streams

        t_counts = counts_from_sites(target.ids, ok_ids, t_pairs, with_lengths=True)
        bg_counts = counts_from_sites(background.ids, ok_ids, bg_pairs, with_lengths=True)

        results = self.analyze_counts(
            t_counts,
            bg_counts,
            params["t_seq_length"],
            params["bg_seq_length"],
            cluster_set=cluster_set,
            order=cluster_set.ids(),
            failed_ids=failed,
        )
        self.logger.info(
            f"ACTCA with anchor {anchor_cluster_id} finished: {len(ok_ids)} cluster(s), {len(failed)} failed"
        )
        return AnalysisResult("actca", results, t_counts, bg_counts, t_pairs, failed, params, target.display_ids)

    def run_gene_analysis(
        self,
        t_counts: Counts,
        bg_counts: Counts,
        t_length: int,
        bg_length: int,
        tf_set: Optional[TFSet] = None,
        cluster_set: Optional[TFClusterSet] = None,
    ) -> AnalysisResult:
        """Analysis on pre-computed gene counts and conserved region lengths.

        Tables carrying nucleotide lengths are scored in cluster mode; otherwise
        ``tf_set`` must provide the profile widths of every TF.
        """
        if t_counts.num_seqs == 0 or bg_counts.num_seqs == 0:
            raise EmptyInputError("gene set")
        if not t_counts.tf_ids:
            raise EmptyInputError("TF set")

        widths = None
        if not (t_counts.has_lengths and bg_counts.has_lengths):
            if tf_set is None:
                raise InputValidationError("Profile widths are required when count tables carry no nucleotide lengths")
            widths = {tf_id: tf_set.get(tf_id).length for tf_id in t_counts.tf_ids}

        params = {
            "analysis_type": "gene",
            "t_num_seqs": t_counts.num_seqs,
            "bg_num_seqs": bg_counts.num_seqs,
            "t_seq_length": t_length,
            "bg_seq_length": bg_length,
        }
        results = self.analyze_counts(
            t_counts, bg_counts, t_length, bg_length, widths=widths, tf_set=tf_set, cluster_set=cluster_set
        )
        return AnalysisResult("gene", results, t_counts, bg_counts, {}, [], params)


def run_pipeline(analysis_type: str, n_jobs: int = 1, **kwargs) -> AnalysisResult:
    """
    Module-level function to run one analysis type.

    Args:
        analysis_type: One of 'ssa', 'tca', 'acsa', 'actca', 'gene'
        n_jobs: Number of parallel scan jobs
        **kwargs: Arguments of the matching ``Pipeline.run_*`` method

    Returns:
        AnalysisResult
    """
    pipeline = Pipeline(n_jobs=n_jobs)
    runners = {
        "ssa": pipeline.run_ssa,
        "tca": pipeline.run_tca,
        "acsa": pipeline.run_acsa,
        "actca": pipeline.run_actca,
        "gene": pipeline.run_gene_analysis,
    }
    runner = runners.get(analysis_type.lower())
    if runner is None:
        raise ValueError(f"Unknown analysis type: {analysis_type}. Expected one of {sorted(runners)}.")
    return runner(**kwargs)

"""High-level public API for TFBS over-representation analysis."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from opossum.counts import Counts
from opossum.exceptions import InputValidationError
from opossum.io import read_clusters, read_counts, read_fasta, read_ids, read_matrices, read_meme, read_peak_positions
from opossum.models import SequenceSet, TFClusterSet, TFSet
from opossum.pipeline import AnalysisResult, Pipeline

logger = logging.getLogger(__name__)

SequenceRef = Union[SequenceSet, str, Path]
TFSetRef = Union[TFSet, str, Path]
ClusterRef = Union[TFClusterSet, str, Path]
CountsRef = Union[Counts, str, Path]
PeakRef = Union[Dict[str, int], str, Path]


@dataclass
class AnalysisConfig:
    """Unified configuration object for library usage."""

    analysis_type: str
    target: Optional[SequenceRef] = None
    background: Optional[SequenceRef] = None
    tf_set: Optional[TFSetRef] = None
    cluster_set: Optional[ClusterRef] = None
    tf_ids: Optional[List[str]] = None
    threshold: Union[str, float] = "80%"
    anchor_ids: List[str] = field(default_factory=list)
    max_distance: int = 100
    t_peak_positions: Optional[PeakRef] = None
    bg_peak_positions: Optional[PeakRef] = None
    with_ks: bool = True
    merge_adjacent: bool = False
    t_counts: Optional[CountsRef] = None
    bg_counts: Optional[CountsRef] = None
    t_length: Optional[int] = None
    bg_length: Optional[int] = None
    n_jobs: int = 1


def create_config(analysis_type: str, **kwargs) -> AnalysisConfig:
    """Build a unified analysis config."""

    anchor_ids = kwargs.pop("anchor_ids", None) or []
    if isinstance(anchor_ids, str):
        anchor_ids = [anchor_ids]
    anchor_id = kwargs.pop("anchor_id", None)
    if anchor_id is not None:
        anchor_ids = [anchor_id] + [a for a in anchor_ids if a != anchor_id]

    return AnalysisConfig(analysis_type=_normalize_type(analysis_type), anchor_ids=list(anchor_ids), **kwargs)


class AnalysisRegistry:
    """Registry of analysis runners using decorator pattern."""

    def __init__(self):
        self._runners: Dict[str, Callable[[AnalysisConfig, Pipeline], Any]] = {}

    def register(self, key: str):
        """Decorator to register an analysis runner."""

        def decorator(runner):
            self._runners[key] = runner
            return runner

        return decorator

    def get(self, key: str) -> Callable:
        if key not in self._runners:
            raise ValueError(f"Analysis type '{key}' not found. Available: {list(self._runners)}")
        return self._runners[key]

    def keys(self) -> List[str]:
        return list(self._runners)


registry = AnalysisRegistry()


@registry.register("ssa")
def _run_ssa(config: AnalysisConfig, pipeline: Pipeline) -> AnalysisResult:
    target, background = _resolve_sequence_pair(config)
    tf_set = _resolve_tf_set(config)
    return pipeline.run_ssa(
        target,
        background,
        tf_set,
        threshold=config.threshold,
        t_peak_positions=_resolve_peaks(config.t_peak_positions, target),
        bg_peak_positions=_resolve_peaks(config.bg_peak_positions, background),
        with_ks=config.with_ks,
    )


@registry.register("tca")
def _run_tca(config: AnalysisConfig, pipeline: Pipeline) -> AnalysisResult:
    target, background = _resolve_sequence_pair(config)
    tf_set = _resolve_tf_set(config, subset=False)
    return pipeline.run_tca(
        target,
        background,
        tf_set,
        _resolve_clusters(config, tf_set),
        threshold=config.threshold,
        t_peak_positions=_resolve_peaks(config.t_peak_positions, target),
        bg_peak_positions=_resolve_peaks(config.bg_peak_positions, background),
        with_ks=config.with_ks,
        merge_adjacent=config.merge_adjacent,
    )


@registry.register("acsa")
def _run_acsa(config: AnalysisConfig, pipeline: Pipeline) -> Union[AnalysisResult, Dict[str, AnalysisResult]]:
    if not config.anchor_ids:
        raise InputValidationError("Anchored analysis requires at least one anchor TF id")
    target, background = _resolve_sequence_pair(config)
    tf_set = _resolve_tf_set(config, keep=config.anchor_ids)
    analyses = pipeline.run_multi_acsa(
        target, background, tf_set, config.anchor_ids, config.max_distance, threshold=config.threshold
    )
    if len(config.anchor_ids) == 1:
        return analyses[config.anchor_ids[0]]
    return analyses


@registry.register("actca")
def _run_actca(config: AnalysisConfig, pipeline: Pipeline) -> AnalysisResult:
    if len(config.anchor_ids) != 1:
        raise InputValidationError("Anchored cluster analysis requires exactly one anchor cluster id")
    target, background = _resolve_sequence_pair(config)
    tf_set = _resolve_tf_set(config, subset=False)
    return pipeline.run_actca(
        target,
        background,
        tf_set,
        _resolve_clusters(config, tf_set),
        config.anchor_ids[0],
        config.max_distance,
        threshold=config.threshold,
    )


@registry.register("gene")
def _run_gene(config: AnalysisConfig, pipeline: Pipeline) -> AnalysisResult:
    if config.t_length is None or config.bg_length is None:
        raise InputValidationError("Gene analysis requires target and background region lengths")
    tf_set = _resolve_tf_set(config, subset=config.cluster_set is None) if config.tf_set is not None else None
    cluster_set = _resolve_clusters(config, tf_set) if config.cluster_set is not None else None

    tf_ids = config.tf_ids
    if tf_ids is None and cluster_set is not None:
        tf_ids = cluster_set.ids()
    elif tf_ids is None and tf_set is not None:
        tf_ids = tf_set.ids()

    t_counts = _resolve_counts(config.t_counts, tf_ids, "target")
    bg_counts = _resolve_counts(config.bg_counts, t_counts.tf_ids, "background")
    return pipeline.run_gene_analysis(
        t_counts, bg_counts, config.t_length, config.bg_length, tf_set=tf_set, cluster_set=cluster_set
    )


def analyze(analysis_type: str, n_jobs: int = 1, **kwargs):
    """Single-call entry point for any analysis type."""

    config = create_config(analysis_type, n_jobs=n_jobs, **kwargs)
    return run_analysis(config)


def run_analysis(config: AnalysisConfig):
    """Execute an analysis using the unified config."""

    runner = registry.get(_normalize_type(config.analysis_type))
    return runner(config, Pipeline(n_jobs=config.n_jobs))


def _normalize_type(analysis_type: str) -> str:
    key = str(analysis_type).lower()
    if key not in registry.keys():
        raise ValueError(f"Unknown analysis type: {analysis_type!r}. Available: {', '.join(registry.keys())}")
    return key


def _resolve_sequences(source: Optional[SequenceRef], name: str) -> SequenceSet:
    """Resolve a sequence source to a SequenceSet."""

    if source is None:
        raise InputValidationError(f"No {name} sequences given")
    if isinstance(source, SequenceSet):
        return source
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Sequence file not found: {path}")
        return read_fasta(path, name=name)
    raise TypeError(f"Unsupported sequence source type: {type(source)!r}")


def _resolve_sequence_pair(config: AnalysisConfig):
    return _resolve_sequences(config.target, "target"), _resolve_sequences(config.background, "background")


def _resolve_tf_set(config: AnalysisConfig, keep: Sequence[str] = (), subset: bool = True) -> TFSet:
    """Load the TF profiles and restrict them to ``config.tf_ids`` (plus ``keep``)."""

    source = config.tf_set
    if source is None:
        raise InputValidationError("No TF profiles given")
    if isinstance(source, TFSet):
        tf_set = source
    elif isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Matrix file not found: {path}")
        tf_set = read_meme(path) if path.suffix.lower() == ".meme" else read_matrices(path)
    else:
        raise TypeError(f"Unsupported TF set type: {type(source)!r}")

    if subset and config.tf_ids:
        tf_set = tf_set.subset(dict.fromkeys(list(keep) + list(config.tf_ids)))
    return tf_set


def _resolve_clusters(config: AnalysisConfig, tf_set: Optional[TFSet]) -> TFClusterSet:
    source = config.cluster_set
    if source is None:
        raise InputValidationError("No TF clusters given")
    if isinstance(source, TFClusterSet):
        cluster_set = source
    elif isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Cluster file not found: {path}")
        cluster_set = read_clusters(path)
    else:
        raise TypeError(f"Unsupported cluster set type: {type(source)!r}")

    if config.tf_ids and _normalize_type(config.analysis_type) == "tca":
        cluster_set = cluster_set.subset(config.tf_ids)
    if tf_set is not None:
        cluster_set.validate_members(tf_set)
    return cluster_set


def _resolve_peaks(source: Optional[PeakRef], sequences: SequenceSet) -> Optional[Dict[str, int]]:
    if source is None or isinstance(source, dict):
        return source
    return read_peak_positions(source, sequences.ids)


def _resolve_counts(source: Optional[CountsRef], tf_ids: Optional[Sequence[str]], name: str) -> Counts:
    if source is None:
        raise InputValidationError(f"No {name} counts given")
    if isinstance(source, Counts):
        return source.subset(tf_ids=tf_ids, fill_missing_tfs=True) if tf_ids is not None else source
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Count file not found: {path}")
        return read_counts(path, tf_ids=tf_ids)
    raise TypeError(f"Unsupported counts source type: {type(source)!r}")


def load_ids(source: Union[str, Path, Sequence[str]]) -> List[str]:
    """Id list from a file path or an in-memory sequence of ids."""

    if isinstance(source, (str, Path)) and Path(source).exists():
        return read_ids(source)
    if isinstance(source, str):
        raise FileNotFoundError(f"Id file not found: {source}")
    return list(source)

"""Combined enrichment results and ranked selection over them."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Union

import pandas as pd

from opossum.exceptions import InputValidationError, ResultSetError
from opossum.models import TFClusterSet, TFSet
from opossum.stats import FisherResult, KSResult, ZscoreResult

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "id": "id",
    "zscore": "zscore",
    "z_score": "zscore",
    "z-score": "zscore",
    "fisher": "fisher_score",
    "fisher_score": "fisher_score",
    "fisher_p_value": "fisher_score",
    "ks": "ks_score",
    "ks_score": "ks_score",
    "ks_p_value": "ks_score",
}


@dataclass(frozen=True)
class EnrichmentResult:
    """All statistics reported for one TF or TF cluster."""

    id: str
    name: Optional[str] = None
    tf_class: Optional[str] = None
    family: Optional[str] = None
    tax_group: Optional[str] = None
    ic: Optional[float] = None
    gc_content: Optional[float] = None
    t_gene_hits: Optional[int] = None
    t_gene_no_hits: Optional[int] = None
    bg_gene_hits: Optional[int] = None
    bg_gene_no_hits: Optional[int] = None
    t_hits: Optional[int] = None
    bg_hits: Optional[int] = None
    t_rate: Optional[float] = None
    bg_rate: Optional[float] = None
    zscore: Optional[float] = None
    zscore_p_value: Optional[float] = None
    fisher_score: Optional[float] = None
    fisher_p_value: Optional[float] = None
    ks_score: Optional[float] = None
    ks_p_value: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _annotation(result_id: str, tf_set: Optional[TFSet], cluster_set: Optional[TFClusterSet]) -> dict:
    if cluster_set is not None and result_id in cluster_set:
        cluster = cluster_set.get(result_id)
        return {"name": cluster.name, "tf_class": cluster.tf_class, "family": cluster.family}
    if tf_set is not None and result_id in tf_set:
        motif = tf_set.get(result_id)
        return {
            "name": motif.name,
            "tf_class": motif.tf_class,
            "family": motif.family,
            "tax_group": motif.tax_group,
            "ic": motif.information_content(),
            "gc_content": motif.gc_content(),
        }
    return {}


class CombinedResultSet:
    """Ordered collection of :class:`EnrichmentResult`, one per analysed id."""

    def __init__(self, results: Iterable[EnrichmentResult] = (), failed_ids: Iterable[str] = ()):
        self._results: Dict[str, EnrichmentResult] = {}
        for result in results:
            if result.id in self._results:
                raise ResultSetError(f"combined result set (duplicate id {result.id})")
            self._results[result.id] = result
        self.failed_ids: List[str] = list(failed_ids)

    @classmethod
    def combine(
        cls,
        fisher: Mapping[str, FisherResult],
        zscore: Mapping[str, ZscoreResult],
        ks: Optional[Mapping[str, KSResult]] = None,
        tf_set: Optional[TFSet] = None,
        cluster_set: Optional[TFClusterSet] = None,
        order: Optional[Iterable[str]] = None,
        failed_ids: Iterable[str] = (),
    ) -> "CombinedResultSet":
        """Join Fisher, Z-score and optional KS results by id.

        Fisher and Z-score results must cover exactly the same ids. Ids listed
        in ``failed_ids`` get a row with every statistic undefined; ``order``
        fixes the output order (Fisher order otherwise, failed ids last).
        """
        if set(fisher) != set(zscore):
            raise ResultSetError("Fisher and Z-score results", sorted(set(fisher) ^ set(zscore)))

        failed_ids = [result_id for result_id in failed_ids if result_id not in fisher]
        ids = list(order) if order is not None else list(fisher) + failed_ids

        results = []
        for result_id in ids:
            annotation = _annotation(result_id, tf_set, cluster_set)
            if result_id not in fisher:
                results.append(EnrichmentResult(id=result_id, **annotation))
                continue

            f = fisher[result_id]
            z = zscore[result_id]
            k = ks.get(result_id) if ks is not None else None
            results.append(
                EnrichmentResult(
                    id=result_id,
                    t_gene_hits=f.t_hits,
                    t_gene_no_hits=f.t_no_hits,
                    bg_gene_hits=f.bg_hits,
                    bg_gene_no_hits=f.bg_no_hits,
                    t_hits=z.t_hits,
                    bg_hits=z.bg_hits,
                    t_rate=z.t_rate,
                    bg_rate=z.bg_rate,
                    zscore=z.zscore,
                    zscore_p_value=z.p_value,
                    fisher_score=f.score,
                    fisher_p_value=f.p_value,
                    ks_score=k.score if k is not None else None,
                    ks_p_value=k.p_value if k is not None else None,
                    **annotation,
                )
            )
        return cls(results, failed_ids=failed_ids)

    def ids(self) -> List[str]:
        return list(self._results)

    def get_result(self, result_id: str) -> EnrichmentResult:
        return self._results[result_id]

    def get_list(
        self,
        num_results: Union[int, str, None] = None,
        zscore_cutoff: Optional[float] = None,
        fisher_cutoff: Optional[float] = None,
        ks_cutoff: Optional[float] = None,
        sort_by: str = "zscore",
        reverse: bool = True,
    ) -> List[EnrichmentResult]:
        """Filter, sort and truncate the results.

        Parameters
        ----------
        num_results : int or "All", optional
            Maximum number of results; ``None`` or ``"All"`` (any case) keeps all.
        zscore_cutoff, fisher_cutoff, ks_cutoff : float, optional
            Inclusive lower bounds. A result whose statistic is undefined never
            passes a cutoff set on that statistic.
        sort_by : str
            ``"zscore"``, ``"fisher"``, ``"ks"`` or ``"id"``.
        reverse : bool
            Sort descending. Undefined values always come last and ties keep
            the input order.
        """
        field = _sort_field(sort_by)
        limit = _result_limit(num_results)

        selected = [
            result
            for result in self._results.values()
            if _passes(result.zscore, zscore_cutoff)
            and _passes(result.fisher_score, fisher_cutoff)
            and _passes(result.ks_score, ks_cutoff)
        ]

        defined = [r for r in selected if getattr(r, field) is not None]
        undefined = [r for r in selected if getattr(r, field) is None]
        ordered = sorted(defined, key=lambda r: getattr(r, field), reverse=reverse) + undefined

        if limit is not None:
            ordered = ordered[:limit]
        return ordered

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([result.to_dict() for result in self._results.values()], columns=_COLUMNS)

    def __iter__(self) -> Iterator[EnrichmentResult]:
        return iter(self._results.values())

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, result_id) -> bool:
        return result_id in self._results


_COLUMNS = list(EnrichmentResult.__dataclass_fields__)


def _sort_field(sort_by: str) -> str:
    field = SORT_FIELDS.get(str(sort_by).lower())
    if field is None:
        raise ValueError(f"Unknown sort field: {sort_by!r}. Available: {sorted(SORT_FIELDS)}")
    return field


def _result_limit(num_results) -> Optional[int]:
    if num_results is None:
        return None
    if isinstance(num_results, str):
        if num_results.strip().lower() == "all":
            return None
        try:
            num_results = int(num_results)
        except ValueError:
            raise InputValidationError(f"num_results must be an integer or 'All', got {num_results!r}") from None
    if isinstance(num_results, bool) or num_results < 0:
        raise InputValidationError(f"num_results must be a non-negative integer or 'All', got {num_results!r}")
    return int(num_results)


def _passes(value: Optional[float], cutoff: Optional[float]) -> bool:
    if cutoff is None:
        return True
    return value is not None and value >= cutoff

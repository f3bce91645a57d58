"""Pairing of anchor TF (or cluster) hits with nearby hits of other TFs."""

from typing import Dict, Iterable, List, Mapping

from opossum.exceptions import InputValidationError
from opossum.models import Site, SitePair
from opossum.overlap import merge_cluster_sites

SiteStream = Mapping[str, List[Site]]


def _check_distance(max_distance: int) -> None:
    if max_distance is None or max_distance < 0:
        raise InputValidationError(f"Maximum inter-site distance must be >= 0, got {max_distance!r}")


def proximal_sites(anchor_sites: Iterable[Site], sites: Iterable[Site], max_distance: int) -> List[SitePair]:
    """Pair every anchor hit with the hits lying within ``max_distance`` bases of it.

    The distance is the number of bases strictly between the two intervals.
    Hits overlapping the anchor are never paired. When a hit belongs to the
    anchor's own TF only hits to the right of the anchor are paired, so that
    each pair of same-TF hits is counted once.
    """
    _check_distance(max_distance)

    anchors = sorted(anchor_sites, key=lambda s: (s.start, s.end))
    candidates = sorted(sites, key=lambda s: (s.start, s.end))

    pairs = []
    for anchor in anchors:
        for site in candidates:
            if site.id == anchor.id and site.start <= anchor.end:
                continue

            if site.start > anchor.end:
                distance = site.start - anchor.end - 1
            elif anchor.start > site.end:
                distance = anchor.start - site.end - 1
            else:
                continue

            if distance <= max_distance:
                pairs.append(SitePair(anchor=anchor, site=site, distance=distance))
    return pairs


def anchored_pairs(
    anchor_stream: SiteStream, tf_streams: Mapping[str, SiteStream], max_distance: int
) -> Dict[str, Dict[str, List[SitePair]]]:
    """Apply :func:`proximal_sites` per sequence for every TF stream.

    Streams are ``{seq_id: [Site]}`` with overlaps already resolved. Returns
    ``{tf_id: {seq_id: [SitePair]}}`` holding only sequences with pairs.
    """
    _check_distance(max_distance)

    result: Dict[str, Dict[str, List[SitePair]]] = {}
    for tf_id, stream in tf_streams.items():
        per_seq = {}
        for seq_id, anchors in anchor_stream.items():
            if not anchors or not stream.get(seq_id):
                continue
            pairs = proximal_sites(anchors, stream[seq_id], max_distance)
            if pairs:
                per_seq[seq_id] = pairs
        result[tf_id] = per_seq
    return result


def multi_anchored_pairs(
    anchor_streams: Mapping[str, SiteStream], tf_streams: Mapping[str, SiteStream], max_distance: int
) -> Dict[str, Dict[str, Dict[str, List[SitePair]]]]:
    """As :func:`anchored_pairs` for several anchors, keyed by anchor id first."""
    return {
        anchor_id: anchored_pairs(anchor_stream, tf_streams, max_distance)
        for anchor_id, anchor_stream in anchor_streams.items()
    }


def find_cluster_sitepairs(
    anchor_sites: Iterable[Site],
    anchor_cluster_id: str,
    sites: Iterable[Site],
    cluster_id: str,
    max_distance: int,
) -> List[SitePair]:
    """Merge raw member hits of both clusters, then pair them as in :func:`proximal_sites`."""
    merged_anchors = merge_cluster_sites(anchor_sites, anchor_cluster_id)
    merged_sites = merge_cluster_sites(sites, cluster_id)
    return proximal_sites(merged_anchors, merged_sites, max_distance)

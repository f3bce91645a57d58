"""Resolution of overlapping hits within one TF or TF cluster stream."""

from dataclasses import replace
from typing import Iterable, List, Optional

from opossum.models import Site
from opossum.ragged import revcom


def sites_overlap(a: Site, b: Site) -> bool:
    """True when either site starts inside the other's [start, end) span."""
    return a.start <= b.start < a.end or b.start <= a.start < b.end


def sites_adjacent(a: Site, b: Site) -> bool:
    """True when the sites share a base or abut with no base between them."""
    return a.start <= b.end + 1 and b.start <= a.end + 1


def _sort_key(site: Site):
    return (site.start, site.end, -site.strand, -site.score, site.id)


def filter_overlapping_sites(sites: Iterable[Site]) -> List[Site]:
    """Collapse overlapping hits of one TF to a non-overlapping set.

    Hits are visited in start order. A hit overlapping the currently retained
    one replaces it only if it scores strictly higher, so on equal scores the
    lower start wins.
    """
    ordered = sorted(sites, key=_sort_key)
    if not ordered:
        return []

    filtered = []
    prev = ordered[0]
    for site in ordered[1:]:
        if sites_overlap(prev, site):
            if site.score > prev.score:
                prev = site
        else:
            filtered.append(prev)
            prev = site
    filtered.append(prev)

    return filtered


def _merge_pair(prev: Site, cur: Site) -> Site:
    end = prev.end
    seq = prev.seq
    if cur.end > prev.end:
        prev_seq, cur_seq = prev.seq, cur.seq
        # only the minus-strand hit is reverse complemented
        if prev.strand != cur.strand:
            if prev.strand == -1:
                prev_seq = revcom(prev_seq)
            else:
                cur_seq = revcom(cur_seq)
        end = cur.end
        seq = prev_seq + cur_seq[prev.end - cur.start + 1 :]
    return replace(
        prev,
        end=end,
        seq=seq,
        score=max(prev.score, cur.score),
        rel_score=max(prev.rel_score, cur.rel_score),
    )


def merge_cluster_sites(
    sites: Iterable[Site], cluster_id: Optional[str] = None, merge_adjacent: bool = False
) -> List[Site]:
    """Merge overlapping hits of a TF cluster's members into contiguous cluster hits.

    Overlap is tested as in :func:`filter_overlapping_sites`. Each merge builds
    a new ``Site`` whose end and sequence cover both hits and whose score and
    relative score are the larger of the two; when the strands differ the
    minus-strand sequence is reverse complemented before joining. Hits that
    merge with nothing keep their own strand and sequence. With
    ``merge_adjacent`` hits that abut or share an end base are merged too.
    """
    ordered = sorted(
        (replace(site, id=cluster_id) if cluster_id is not None else site for site in sites), key=_sort_key
    )
    if not ordered:
        return []

    merged = [ordered[0]]
    for site in ordered[1:]:
        if sites_overlap(merged[-1], site) or (merge_adjacent and sites_adjacent(merged[-1], site)):
            merged[-1] = _merge_pair(merged[-1], site)
        else:
            merged.append(site)

    return merged

"""
oPOSSUM
==================

This package detects transcription factor binding sites (TFBS) that are
over-represented in a target set of sequences (or genes) relative to a
background set.  Sites are predicted by scanning with TF profile matrices,
resolved so that overlapping hits are not counted twice, tallied per
sequence and scored with a one-tailed Fisher exact test, a Z-score on the
rate of TFBS nucleotides and, optionally, a Kolmogorov-Smirnov test on the
distance of sites to peak maxima.

The top level modules expose the following key components:

``models``
    Frozen records for TF profiles, TF clusters, binding sites and site
    pairs, plus the sequence, TF and cluster collections.

``scanner``
    Relative-score thresholding and strand-aware scanning of sequences.

``overlap``
    Resolution of overlapping hits of one TF and merging of the hits of a
    TF cluster.

``counts``
    Per sequence and TF hit tallies and site to peak-max distances.

``stats``
    Fisher, Z-score and KS statistics.

``results``
    Combined per TF results and ranked selection over them.

``anchored``
    Pairing of anchor TF (or cluster) sites with nearby sites.

``pipeline``
    The single TF, TF cluster, anchored and gene-based analyses.

``api`` / ``cli``
    Library and command line entry points.
"""

from opossum.api import analyze, create_config, run_analysis
from opossum.exceptions import OpossumError
from opossum.models import Motif, SequenceSet, Site, SitePair, TFCluster, TFClusterSet, TFSet
from opossum.pipeline import AnalysisResult, Pipeline, run_pipeline
from opossum.results import CombinedResultSet, EnrichmentResult

__all__ = [
    "AnalysisResult",
    "CombinedResultSet",
    "EnrichmentResult",
    "Motif",
    "OpossumError",
    "Pipeline",
    "SequenceSet",
    "Site",
    "SitePair",
    "TFCluster",
    "TFClusterSet",
    "TFSet",
    "analyze",
    "create_config",
    "run_analysis",
    "run_pipeline",
]

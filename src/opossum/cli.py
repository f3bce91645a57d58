import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

import numpy as np

from opossum.api import create_config, load_ids, run_analysis
from opossum.io import write_results, write_site_details
from opossum.pipeline import AnalysisResult


def setup_logging(verbose: bool):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logging.getLogger("numba").setLevel(logging.WARNING)


def _add_sequence_inputs(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("target", help="Path to a FASTA file with the target sequences.")
    parser.add_argument("background", help="Path to a FASTA file with the background sequences.")
    parser.add_argument("matrices", help="Path to the TF profile matrices (plain count/weight matrices or MEME).")


def _add_search_options(parser: argparse.ArgumentParser) -> argparse._ArgumentGroup:
    group = parser.add_argument_group("Search Options")
    group.add_argument(
        "--threshold",
        default="80%",
        help=(
            "Minimum relative score of a binding site, either as a percentage ('80%%') "
            "or a fraction (0.8). (default: %(default)s)"
        ),
    )
    group.add_argument(
        "--tf-ids",
        help="Restrict the analysis to these TF (or cluster) ids: a file or a comma separated list.",
    )
    return group


def _add_peak_options(group: argparse._ArgumentGroup) -> None:
    group.add_argument(
        "--t-peaks",
        help="File with one peak maximum position per target sequence, used by the KS test.",
    )
    group.add_argument(
        "--bg-peaks",
        help="File with one peak maximum position per background sequence, used by the KS test.",
    )
    group.add_argument(
        "--no-ks",
        action="store_true",
        help="Skip the Kolmogorov-Smirnov test on site to peak-max distances.",
    )


def _add_output_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("Input/Output Options")
    group.add_argument("--output", help="Write the ranked results table (tab separated) to this file.")
    group.add_argument("--details-dir", help="Write the target binding sites of each reported id to this directory.")
    group.add_argument(
        "--num-results",
        default="All",
        help="Maximum number of results to report, or 'All'. (default: %(default)s)",
    )
    group.add_argument("--zscore-cutoff", type=float, help="Report only results with a Z-score >= this value.")
    group.add_argument("--fisher-cutoff", type=float, help="Report only results with a Fisher score >= this value.")
    group.add_argument("--ks-cutoff", type=float, help="Report only results with a KS score >= this value.")
    group.add_argument(
        "--sort-by",
        choices=["zscore", "fisher", "ks", "id"],
        default="zscore",
        help="Statistic to rank results by, descending. (default: %(default)s)",
    )


def _add_technical_options(parser: argparse.ArgumentParser, jobs: bool = True) -> None:
    group = parser.add_argument_group("Technical Options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging to standard output for detailed execution tracking.",
    )
    if jobs:
        group.add_argument(
            "--jobs",
            type=int,
            default=1,
            help="Number of parallel jobs to run. Set to -1 to use all available CPU cores. (default: %(default)s)",
        )


def create_arg_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        description="oPOSSUM: detect over-represented transcription factor binding sites in a target sequence set",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
 Examples:
   # Single TF analysis
   opossum ssa target.fa background.fa matrices.txt --threshold 85% \\
     --num-results 20 --output ssa_results.tsv

   # TF cluster analysis
   opossum tca target.fa background.fa matrices.txt clusters.tsv \\
     --zscore-cutoff 2 --details-dir hits/

   # Anchored analysis of TFs near MA0001
   opossum acsa target.fa background.fa matrices.txt --anchor MA0001 \\
     --max-distance 100 --jobs 4

   # Anchored cluster analysis
   opossum actca target.fa background.fa matrices.txt clusters.tsv \\
     --anchor C1 --max-distance 50

   # Gene-based analysis on pre-computed counts
   opossum gene target_counts.tsv background_counts.tsv \\
     --t-length 120000 --bg-length 2400000 --matrices matrices.txt
         """,
    )

    subparsers = parser.add_subparsers(dest="mode", help="Analysis type", required=True)

    # Single TF site analysis
    ssa_parser = subparsers.add_parser("ssa", help="Over-representation of individual TF binding sites.")
    _add_sequence_inputs(ssa_parser)
    _add_peak_options(_add_search_options(ssa_parser))
    _add_output_options(ssa_parser)
    _add_technical_options(ssa_parser)

    # TF cluster analysis
    tca_parser = subparsers.add_parser("tca", help="Over-representation of TF clusters (merged member sites).")
    _add_sequence_inputs(tca_parser)
    tca_parser.add_argument("clusters", help="Path to the TF cluster table (tab separated).")
    tca_group = _add_search_options(tca_parser)
    _add_peak_options(tca_group)
    tca_group.add_argument(
        "--merge-adjacent",
        action="store_true",
        help="Also merge cluster sites that abut or share only their end base.",
    )
    _add_output_options(tca_parser)
    _add_technical_options(tca_parser)

    # Anchored combination site analysis
    acsa_parser = subparsers.add_parser("acsa", help="Over-representation of TF sites near the sites of an anchor TF.")
    _add_sequence_inputs(acsa_parser)
    acsa_group = _add_search_options(acsa_parser)
    acsa_group.add_argument(
        "--anchor",
        required=True,
        action="append",
        dest="anchors",
        help="Anchor TF id. Repeat the option to run the analysis for several anchors.",
    )
    acsa_group.add_argument(
        "--max-distance",
        type=int,
        default=100,
        help="Maximum number of bases between an anchor site and a paired site. (default: %(default)s)",
    )
    _add_output_options(acsa_parser)
    _add_technical_options(acsa_parser)

    # Anchored TF cluster analysis
    actca_parser = subparsers.add_parser(
        "actca", help="Over-representation of TF cluster sites near the sites of an anchor cluster."
    )
    _add_sequence_inputs(actca_parser)
    actca_parser.add_argument("clusters", help="Path to the TF cluster table (tab separated).")
    actca_group = _add_search_options(actca_parser)
    actca_group.add_argument("--anchor", required=True, help="Anchor TF cluster id.")
    actca_group.add_argument(
        "--max-distance",
        type=int,
        default=100,
        help="Maximum number of bases between an anchor site and a paired site. (default: %(default)s)",
    )
    _add_output_options(actca_parser)
    _add_technical_options(actca_parser)

    # Gene-based analysis on pre-computed counts
    gene_parser = subparsers.add_parser("gene", help="Over-representation from pre-computed gene/TF site counts.")
    gene_parser.add_argument("t_counts", help="Target count table: gene id, TF id, count[, nucleotides].")
    gene_parser.add_argument("bg_counts", help="Background count table: gene id, TF id, count[, nucleotides].")
    gene_group = gene_parser.add_argument_group("Gene Options")
    gene_group.add_argument("--t-length", type=int, required=True, help="Total length of the target search regions.")
    gene_group.add_argument(
        "--bg-length", type=int, required=True, help="Total length of the background search regions."
    )
    gene_group.add_argument("--matrices", help="TF profile matrices providing names and profile widths.")
    gene_group.add_argument("--clusters", help="TF cluster table, for counts of cluster sites.")
    gene_group.add_argument("--tf-ids", help="Restrict the analysis to these ids: a file or a comma separated list.")
    _add_output_options(gene_parser)
    _add_technical_options(gene_parser, jobs=False)

    return parser


def validate_inputs(args) -> None:
    """Validate input files and parameters."""
    logger = logging.getLogger(__name__)

    if args.mode == "gene":
        paths = [("Count file", args.t_counts), ("Count file", args.bg_counts)]
        paths += [("Matrix file", args.matrices), ("Cluster file", args.clusters)]
    else:
        paths = [
            ("FASTA file", args.target),
            ("FASTA file", args.background),
            ("Matrix file", args.matrices),
            ("Cluster file", getattr(args, "clusters", None)),
            ("Peak file", getattr(args, "t_peaks", None)),
            ("Peak file", getattr(args, "bg_peaks", None)),
        ]

    for kind, path in paths:
        if path and not os.path.exists(path):
            logger.error(f"{kind} not found: {path}")
            sys.exit(1)

    if getattr(args, "max_distance", 0) < 0:
        logger.error(f"Maximum distance must be >= 0, got {args.max_distance}")
        sys.exit(1)
    if args.details_dir and args.mode == "gene":
        logger.error("Site details are not available for the gene analysis")
        sys.exit(1)


def _parse_ids(value):
    if value is None:
        return None
    if os.path.exists(value):
        return load_ids(value)
    return [token.strip() for token in value.split(",") if token.strip()]


def map_args_to_config_kwargs(args) -> Dict[str, Any]:
    """Map CLI arguments to analysis config keyword arguments."""
    kwargs: Dict[str, Any] = {"tf_ids": _parse_ids(getattr(args, "tf_ids", None))}

    if args.mode == "gene":
        kwargs.update(
            {
                "t_counts": args.t_counts,
                "bg_counts": args.bg_counts,
                "t_length": args.t_length,
                "bg_length": args.bg_length,
                "tf_set": args.matrices,
                "cluster_set": args.clusters,
            }
        )
        return kwargs

    kwargs.update(
        {
            "target": args.target,
            "background": args.background,
            "tf_set": args.matrices,
            "threshold": args.threshold,
            "n_jobs": args.jobs,
        }
    )
    if args.mode in ("ssa", "tca"):
        kwargs.update(
            {
                "t_peak_positions": args.t_peaks,
                "bg_peak_positions": args.bg_peaks,
                "with_ks": not args.no_ks,
            }
        )
    if args.mode == "tca":
        kwargs.update({"cluster_set": args.clusters, "merge_adjacent": args.merge_adjacent})
    elif args.mode == "acsa":
        kwargs.update({"anchor_ids": args.anchors, "max_distance": args.max_distance})
    elif args.mode == "actca":
        kwargs.update({"cluster_set": args.clusters, "anchor_id": args.anchor, "max_distance": args.max_distance})
    return kwargs


def _json_default(value):
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def report(analysis: AnalysisResult, args, suffix: str = "") -> Dict[str, Any]:
    """Select the ranked results, write the requested files and return a summary."""
    if analysis.is_partial:
        logging.getLogger(__name__).warning(
            f"Partial results: no statistics for {', '.join(analysis.failed_ids)}"
        )

    selected = analysis.results.get_list(
        num_results=args.num_results,
        zscore_cutoff=args.zscore_cutoff,
        fisher_cutoff=args.fisher_cutoff,
        ks_cutoff=args.ks_cutoff,
        sort_by=args.sort_by,
    )

    if args.output:
        output = Path(args.output)
        if suffix:
            output = output.with_name(f"{output.stem}.{suffix}{output.suffix}")
        write_results(output, selected)

    if args.details_dir:
        details_dir = Path(args.details_dir)
        details_dir.mkdir(parents=True, exist_ok=True)
        display_ids = analysis.display_ids
        for result in selected:
            if result.id in analysis.details:
                name = f"{suffix}.{result.id}" if suffix else result.id
                details = analysis.details[result.id]
                write_site_details(details_dir / f"{name}.hits.txt", result.id, details, display_ids)

    return {
        "analysis_type": analysis.analysis_type,
        "params": analysis.params,
        "failed_ids": analysis.failed_ids,
        "results": [result.to_dict() for result in selected],
    }


def main_cli():
    """Main CLI entry point."""
    parser = create_arg_parser()

    if len(sys.argv) == 1:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args()

    setup_logging(args.verbose)

    validate_inputs(args)

    config_kwargs = map_args_to_config_kwargs(args)

    if args.verbose:
        logger = logging.getLogger(__name__)
        logger.info("=" * 60)
        logger.info(f"oPOSSUM - {args.mode.upper()} analysis")
        logger.info("=" * 60)
        for key, value in config_kwargs.items():
            if value is not None:
                logger.info(f"{key}: {value}")
        logger.info("=" * 60)

    try:
        config = create_config(args.mode, **config_kwargs)
        outcome = run_analysis(config)

        if isinstance(outcome, AnalysisResult):
            summary = report(outcome, args)
        else:
            summary = {anchor_id: report(analysis, args, suffix=anchor_id) for anchor_id, analysis in outcome.items()}

        print(json.dumps(summary, default=_json_default))

    except Exception as e:
        print(f"ERROR: Analysis failed: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main_cli()

"""
Integration tests for opossum.

The pipeline tests plant exact motif occurrences in otherwise motif-free
sequences so that every count is known in advance. The command line tests
run each subcommand on the files in examples/.
"""

import json
import math
import subprocess
import sys

import numpy as np
import pytest

from opossum.api import AnalysisConfig, analyze, create_config, run_analysis
from opossum.counts import Counts
from opossum.exceptions import EmptyInputError, InputValidationError, MotifError
from opossum.models import Motif, SequenceSet, TFCluster, TFClusterSet, TFSet
from opossum.pipeline import Pipeline, run_pipeline

BASE_INDEX = {"A": 0, "C": 1, "G": 2, "T": 3}

PLAIN = "C" * 10
SITE_A = "GATTACCA"
SITE_B = "CTCGAGGT"


def consensus_motif(motif_id: str, consensus: str, depth: int = 20) -> Motif:
    matrix = np.zeros((4, len(consensus)))
    for col, base in enumerate(consensus):
        matrix[BASE_INDEX[base], col] = depth
    return Motif(id=motif_id, name=f"TF {motif_id}", matrix=matrix, tf_class="test")


def flat_motif(motif_id: str = "FLAT") -> Motif:
    return Motif(id=motif_id, name="flat", matrix=np.full((4, 6), 5.0))


def run_cli(cmd: list[str]) -> subprocess.CompletedProcess:
    """Run CLI through current Python env to avoid global PATH contamination."""
    args = cmd[1:] if cmd and cmd[0] == "opossum" else cmd
    return subprocess.run([sys.executable, "-m", "opossum.cli", *args], capture_output=True, text=True)


@pytest.fixture
def tf_set():
    return TFSet([consensus_motif("A", SITE_A), consensus_motif("B", "TTTTGGGG")])


@pytest.fixture
def single_site_sets():
    target = SequenceSet([PLAIN + SITE_A + PLAIN] * 3, name="target")
    background = SequenceSet(["C" * 28] * 10, name="background")
    return target, background


@pytest.fixture
def paired_site_sets():
    target = SequenceSet([PLAIN + SITE_A + "CC" + SITE_B + PLAIN] * 3, name="target")
    background = SequenceSet(["C" * 38] * 10, name="background")
    return target, background


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def test_ssa_enriched_tf_ranks_first(tf_set, single_site_sets):
    """Three of three target sequences hit by A and no background sequence."""
    target, background = single_site_sets
    analysis = Pipeline(n_jobs=1).run_ssa(target, background, tf_set, threshold="90%")

    result = analysis.results.get_result("A")
    assert result.t_gene_hits == 3
    assert result.bg_gene_hits == 0
    assert result.t_hits == 3
    assert result.fisher_score == pytest.approx(math.log(286))
    assert result.zscore is not None and math.isfinite(result.zscore) and result.zscore > 0
    assert result.name == "TF A"

    other = analysis.results.get_result("B")
    assert other.t_gene_hits == 0
    assert other.zscore is None

    assert analysis.results.get_list(sort_by="fisher")[0].id == "A"
    assert analysis.results.get_list(sort_by="zscore")[0].id == "A"
    assert not analysis.is_partial
    assert analysis.params["t_seq_length"] == 84
    assert analysis.params["bg_seq_length"] == 280


def test_ssa_details_hold_resolved_sites(tf_set, single_site_sets):
    target, background = single_site_sets
    analysis = Pipeline().run_ssa(target, background, tf_set, threshold=0.9, with_ks=False)

    sites = analysis.details["A"]["seq1"]
    assert [(s.start, s.end, s.strand, s.seq) for s in sites] == [(11, 18, 1, SITE_A)]
    assert analysis.results.get_result("A").ks_score is None
    assert analysis.display_ids["seq1"] == "seq1"


def test_ssa_failed_tf_is_reported(tf_set, single_site_sets):
    target, background = single_site_sets
    tfs = TFSet(list(tf_set) + [flat_motif()])

    analysis = Pipeline().run_ssa(target, background, tfs, threshold="90%")

    assert analysis.failed_ids == ["FLAT"]
    assert analysis.is_partial
    assert analysis.results.ids() == ["A", "B", "FLAT"]
    failed = analysis.results.get_result("FLAT")
    assert failed.zscore is None and failed.fisher_score is None
    assert len(analysis.results.get_list(num_results="All")) == 3
    assert analysis.results.get_list(num_results="All")[-1].id == "FLAT"


def test_ssa_empty_tf_set(single_site_sets):
    target, background = single_site_sets
    with pytest.raises(EmptyInputError):
        Pipeline().run_ssa(target, background, TFSet([]))


def test_tca_merges_member_sites(single_site_sets):
    target, background = single_site_sets
    tfs = TFSet([consensus_motif("A", SITE_A), consensus_motif("A2", "GATTACC"), consensus_motif("B", "TTTTGGGG")])
    clusters = TFClusterSet(
        [
            TFCluster(id="C1", name="A-like", tf_ids=("A", "A2"), tf_class="test"),
            TFCluster(id="C2", name="B-like", tf_ids=("B",)),
        ]
    )

    analysis = Pipeline().run_tca(target, background, tfs, clusters, threshold="90%")

    merged = analysis.details["C1"]["seq0"]
    assert [(s.id, s.start, s.end) for s in merged] == [("C1", 11, 18)]
    assert analysis.t_counts.tfbs_count("C1") == 3
    assert analysis.t_counts.tfbs_length("C1") == 24

    result = analysis.results.get_result("C1")
    assert result.name == "A-like"
    assert result.t_gene_hits == 3
    assert result.t_rate == pytest.approx(24 / 84)
    assert result.fisher_score == pytest.approx(math.log(286))
    assert analysis.results.get_list(sort_by="zscore")[0].id == "C1"


def test_tca_cluster_with_failed_member(tf_set, single_site_sets):
    target, background = single_site_sets
    tfs = TFSet(list(tf_set) + [flat_motif()])
    clusters = TFClusterSet(
        [TFCluster(id="C1", name="A", tf_ids=("A",)), TFCluster(id="C3", name="mixed", tf_ids=("B", "FLAT"))]
    )

    analysis = Pipeline().run_tca(target, background, tfs, clusters, threshold="90%")

    assert analysis.failed_ids == ["C3"]
    assert analysis.results.ids() == ["C1", "C3"]
    assert analysis.results.get_result("C3").zscore is None
    assert analysis.results.get_result("C1").t_gene_hits == 3


def test_acsa_counts_pairs(paired_site_sets):
    target, background = paired_site_sets
    tfs = TFSet([consensus_motif("A", SITE_A), consensus_motif("B", SITE_B)])

    analysis = Pipeline().run_acsa(target, background, tfs, anchor_id="A", max_distance=5, threshold="90%")

    assert analysis.analysis_type == "acsa"
    assert analysis.params["anchor_id"] == "A"
    result = analysis.results.get_result("B")
    assert result.t_hits == 3
    assert result.t_gene_hits == 3
    assert result.bg_gene_hits == 0
    assert analysis.results.get_result("A").t_hits == 0

    pair = analysis.details["B"]["seq2"][0]
    assert (pair.anchor.start, pair.site.start, pair.distance) == (11, 21, 2)


def test_acsa_distance_limit(paired_site_sets):
    target, background = paired_site_sets
    tfs = TFSet([consensus_motif("A", SITE_A), consensus_motif("B", SITE_B)])

    analysis = Pipeline().run_acsa(target, background, tfs, anchor_id="A", max_distance=1, threshold="90%")
    assert analysis.results.get_result("B").t_hits == 0


def test_multi_acsa(paired_site_sets):
    target, background = paired_site_sets
    tfs = TFSet([consensus_motif("A", SITE_A), consensus_motif("B", SITE_B)])

    analyses = Pipeline().run_multi_acsa(target, background, tfs, ["A", "B"], max_distance=5, threshold="90%")

    assert list(analyses) == ["A", "B"]
    assert analyses["A"].results.get_result("B").t_hits == 3
    # A lies to the left of B and is a different TF, so it pairs with the B anchor too
    assert analyses["B"].results.get_result("A").t_hits == 3
    assert analyses["B"].results.get_result("B").t_hits == 0


def test_acsa_anchor_errors(paired_site_sets):
    target, background = paired_site_sets
    tfs = TFSet([consensus_motif("A", SITE_A), flat_motif()])

    with pytest.raises(MotifError):
        Pipeline().run_acsa(target, background, tfs, anchor_id="FLAT", max_distance=5)
    with pytest.raises(InputValidationError):
        Pipeline().run_acsa(target, background, tfs, anchor_id="Z", max_distance=5)
    with pytest.raises(InputValidationError):
        Pipeline().run_acsa(target, background, tfs, anchor_id="A", max_distance=-1)


def test_actca_counts_cluster_pairs(paired_site_sets):
    target, background = paired_site_sets
    tfs = TFSet([consensus_motif("A", SITE_A), consensus_motif("B", SITE_B)])
    clusters = TFClusterSet([TFCluster(id="C1", name="A", tf_ids=("A",)), TFCluster(id="C2", name="B", tf_ids=("B",))])

    analysis = Pipeline().run_actca(target, background, tfs, clusters, "C1", max_distance=5, threshold="90%")

    assert analysis.results.get_result("C2").t_hits == 3
    assert analysis.t_counts.tfbs_length("C2") == 24
    assert analysis.results.get_result("C1").t_hits == 0
    pair = analysis.details["C2"]["seq0"][0]
    assert (pair.anchor.id, pair.site.id, pair.distance) == ("C1", "C2", 2)


def test_gene_analysis():
    tfs = TFSet([consensus_motif("A", SITE_A)])
    t_counts = Counts.from_rows([("g1", "A", 2), ("g2", "A", 1), ("g3", "A", 0)])
    bg_counts = Counts.from_rows([(f"b{i}", "A", 1 if i == 0 else 0) for i in range(10)])

    analysis = Pipeline().run_gene_analysis(t_counts, bg_counts, 3000, 10000, tf_set=tfs)

    result = analysis.results.get_result("A")
    assert (result.t_gene_hits, result.t_gene_no_hits) == (2, 1)
    assert (result.bg_gene_hits, result.bg_gene_no_hits) == (1, 9)
    assert result.t_rate == pytest.approx(24 / 3000)
    assert result.zscore > 0

    with pytest.raises(InputValidationError):
        Pipeline().run_gene_analysis(t_counts, bg_counts, 3000, 10000)


def test_gene_analysis_cluster_lengths():
    t_counts = Counts.from_rows([("g1", "C1", 2, 20), ("g2", "C1", 0, 0)])
    bg_counts = Counts.from_rows([("b1", "C1", 1, 10), ("b2", "C1", 0, 0), ("b3", "C1", 0, 0)])

    analysis = Pipeline().run_gene_analysis(t_counts, bg_counts, 200, 600)
    assert analysis.results.get_result("C1").t_rate == pytest.approx(0.1)


def test_run_pipeline_dispatch(tf_set, single_site_sets):
    target, background = single_site_sets
    analysis = run_pipeline("SSA", target=target, background=background, tf_set=tf_set, threshold="90%")
    assert analysis.analysis_type == "ssa"

    with pytest.raises(ValueError):
        run_pipeline("motif", target=target)


# ---------------------------------------------------------------------------
# Library API
# ---------------------------------------------------------------------------


def test_analyze_in_memory(tf_set, single_site_sets):
    target, background = single_site_sets
    analysis = analyze("ssa", target=target, background=background, tf_set=tf_set, threshold="90%", tf_ids=["A"])

    assert analysis.results.ids() == ["A"]
    assert analysis.results.get_result("A").t_gene_hits == 3


def test_analyze_multi_anchor(paired_site_sets):
    target, background = paired_site_sets
    tfs = TFSet([consensus_motif("A", SITE_A), consensus_motif("B", SITE_B)])

    analyses = analyze(
        "acsa", target=target, background=background, tf_set=tfs, anchor_ids=["A", "B"], max_distance=5
    )
    assert set(analyses) == {"A", "B"}

    single = analyze("acsa", target=target, background=background, tf_set=tfs, anchor_id="A", max_distance=5)
    assert single.params["anchor_id"] == "A"


def test_analyze_from_files(examples_dir):
    analysis = analyze(
        "tca",
        target=examples_dir / "target.fa",
        background=examples_dir / "background.fa",
        tf_set=examples_dir / "matrices.txt",
        cluster_set=examples_dir / "clusters.tsv",
    )
    assert analysis.results.ids() == ["C1", "C2", "C3"]
    assert analysis.display_ids["seq0"] == "chr1:1000-1079"


def test_analyze_gene_in_memory_counts_keep_every_tf():
    """A TF absent from in-memory count tables still gets a zero-count result row."""
    tfs = TFSet([consensus_motif("A", SITE_A), consensus_motif("B", SITE_B)])
    t_counts = Counts.from_rows([("g1", "A", 2), ("g2", "A", 0)])
    bg_counts = Counts.from_rows([(f"b{i}", "A", 1 if i == 0 else 0) for i in range(5)])

    analysis = analyze("gene", t_counts=t_counts, bg_counts=bg_counts, t_length=2000, bg_length=5000, tf_set=tfs)

    assert analysis.results.ids() == ["A", "B"]
    missing = analysis.results.get_result("B")
    assert (missing.t_gene_hits, missing.t_gene_no_hits) == (0, 2)
    assert (missing.bg_gene_hits, missing.bg_gene_no_hits) == (0, 5)
    assert missing.zscore is None


def test_run_analysis_uppercase_type_subsets_clusters(examples_dir):
    config = AnalysisConfig(
        analysis_type="TCA",
        target=examples_dir / "target.fa",
        background=examples_dir / "background.fa",
        tf_set=examples_dir / "matrices.txt",
        cluster_set=examples_dir / "clusters.tsv",
        tf_ids=["C1"],
    )
    analysis = run_analysis(config)
    assert analysis.results.ids() == ["C1"]


def test_create_config_rejects_unknown_type():
    with pytest.raises(ValueError):
        create_config("bogus")


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------


def test_cli_ssa(examples_dir, temp_dir):
    """Test single TF analysis with a results table."""
    output = temp_dir / "ssa.tsv"
    cmd = [
        "opossum",
        "ssa",
        str(examples_dir / "target.fa"),
        str(examples_dir / "background.fa"),
        str(examples_dir / "matrices.txt"),
        "--threshold",
        "85%",
        "--t-peaks",
        str(examples_dir / "target_peaks.txt"),
        "--output",
        str(output),
    ]

    result = run_cli(cmd)
    assert result.returncode == 0, f"Command failed with stderr: {result.stderr}"

    summary = json.loads(result.stdout)
    for key in ["analysis_type", "params", "failed_ids", "results"]:
        assert key in summary, f"Missing key '{key}' in output"
    assert summary["analysis_type"] == "ssa"
    assert {r["id"] for r in summary["results"]} == {"MA0001", "MA0002", "MA0003", "MA0004"}

    header = output.read_text().splitlines()[0].split("\t")
    assert header[:2] == ["TF", "ID"]
    assert header[-1] == "KS score"


def test_cli_tca_with_details(examples_dir, temp_dir):
    """Test cluster analysis writing per-cluster site files."""
    details = temp_dir / "hits"
    cmd = [
        "opossum",
        "tca",
        str(examples_dir / "target.fa"),
        str(examples_dir / "background.fa"),
        str(examples_dir / "matrices.txt"),
        str(examples_dir / "clusters.tsv"),
        "--details-dir",
        str(details),
        "--sort-by",
        "fisher",
        "--num-results",
        "2",
    ]

    result = run_cli(cmd)
    assert result.returncode == 0, f"Command failed with stderr: {result.stderr}"

    summary = json.loads(result.stdout)
    assert len(summary["results"]) == 2
    for reported in summary["results"]:
        assert (details / f"{reported['id']}.hits.txt").exists()


def test_cli_acsa_multiple_anchors(examples_dir):
    cmd = [
        "opossum",
        "acsa",
        str(examples_dir / "target.fa"),
        str(examples_dir / "background.fa"),
        str(examples_dir / "matrices.txt"),
        "--anchor",
        "MA0001",
        "--anchor",
        "MA0003",
        "--max-distance",
        "20",
    ]

    result = run_cli(cmd)
    assert result.returncode == 0, f"Command failed with stderr: {result.stderr}"

    summary = json.loads(result.stdout)
    assert set(summary) == {"MA0001", "MA0003"}
    assert summary["MA0001"]["params"]["max_distance"] == 20


def test_cli_actca(examples_dir):
    cmd = [
        "opossum",
        "actca",
        str(examples_dir / "target.fa"),
        str(examples_dir / "background.fa"),
        str(examples_dir / "matrices.txt"),
        str(examples_dir / "clusters.tsv"),
        "--anchor",
        "C1",
        "--zscore-cutoff",
        "-100",
    ]

    result = run_cli(cmd)
    assert result.returncode == 0, f"Command failed with stderr: {result.stderr}"
    assert json.loads(result.stdout)["analysis_type"] == "actca"


def test_cli_gene(examples_dir, temp_dir):
    output = temp_dir / "gene.tsv"
    cmd = [
        "opossum",
        "gene",
        str(examples_dir / "target_counts.tsv"),
        str(examples_dir / "background_counts.tsv"),
        "--t-length",
        "10000",
        "--bg-length",
        "40000",
        "--matrices",
        str(examples_dir / "matrices.txt"),
        "--output",
        str(output),
    ]

    result = run_cli(cmd)
    assert result.returncode == 0, f"Command failed with stderr: {result.stderr}"

    summary = json.loads(result.stdout)
    gata1 = next(r for r in summary["results"] if r["id"] == "MA0001")
    assert gata1["t_gene_hits"] == 4
    assert gata1["bg_gene_hits"] == 4
    assert len(output.read_text().splitlines()) == 5


def test_cli_with_missing_files():
    """Test CLI behavior with missing input files."""
    cmd = ["opossum", "ssa", "nonexistent_target.fa", "nonexistent_bg.fa", "nonexistent.txt"]

    result = run_cli(cmd)
    assert result.returncode != 0, "Should fail with missing files"
    assert "not found" in result.stderr.lower(), "Should mention missing file"


def test_cli_with_invalid_threshold(examples_dir):
    cmd = [
        "opossum",
        "ssa",
        str(examples_dir / "target.fa"),
        str(examples_dir / "background.fa"),
        str(examples_dir / "matrices.txt"),
        "--threshold",
        "80",
    ]

    result = run_cli(cmd)
    assert result.returncode == 1
    assert "ERROR" in result.stdout


def test_cli_with_invalid_mode():
    """Test CLI behavior with invalid mode."""
    result = run_cli(["opossum", "invalid_mode", "file1", "file2"])
    assert result.returncode != 0, "Should fail with invalid mode"


if __name__ == "__main__":
    pytest.main([__file__])

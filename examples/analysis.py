# %%


from pathlib import Path

import pandas as pd

from opossum import analyze
from opossum.io import read_clusters, read_fasta, read_matrices, results_to_frame
from opossum.pipeline import Pipeline

EXAMPLES = Path(__file__).parent

# %%

target = read_fasta(EXAMPLES / "target.fa", name="target")
background = read_fasta(EXAMPLES / "background.fa", name="background")
tf_set = read_matrices(EXAMPLES / "matrices.txt")
cluster_set = read_clusters(EXAMPLES / "clusters.tsv", tf_set)

pipeline = Pipeline(n_jobs=2)

# %%

ssa = pipeline.run_ssa(target, background, tf_set, threshold="80%")
results_to_frame(ssa.results.get_list(num_results="All", sort_by="zscore"))

# %%

tca = pipeline.run_tca(target, background, tf_set, cluster_set, threshold="80%")
results_to_frame(tca.results.get_list(num_results=10, sort_by="fisher"))

# %%

acsa = pipeline.run_acsa(target, background, tf_set, anchor_id="MA0001", max_distance=20)
for result in acsa.results.get_list(zscore_cutoff=0):
    pairs = acsa.details.get(result.id, {})
    print(result.id, result.t_hits, sum(len(p) for p in pairs.values()))

# %%

gene = analyze(
    "gene",
    t_counts=EXAMPLES / "target_counts.tsv",
    bg_counts=EXAMPLES / "background_counts.tsv",
    t_length=5 * 2000,
    bg_length=20 * 2000,
    tf_set=tf_set,
)
pd.DataFrame([r.to_dict() for r in gene.results.get_list(sort_by="fisher")])

"""
One replication, three matching methods
=======================================
Draw one synthetic sample and compare propensity, Mahalanobis and
prognostic (pilot design) matching on it.
"""

import numpy as np
from pilotmatch import (
    MahalanobisMatching, PrognosticMatching, PropensityScoreMatching,
    SimulationConfig, generate_data,
)

RNG = np.random.default_rng(0)

# ── 1. Simulate data ──────────────────────────────────────────────────────────
config = SimulationConfig(n=2_000, p=10, rho=0.5, k=3)
data   = generate_data(config, RNG)
print(data)

# ── 2. Match and estimate ─────────────────────────────────────────────────────
for estimator in [
    PropensityScoreMatching(k=config.k),
    MahalanobisMatching(k=config.k),
    PrognosticMatching(k=config.k),
]:
    result = estimator.fit(data, rng=np.random.default_rng(1))
    print(result.summary())

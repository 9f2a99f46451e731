"""
A small simulation grid
=======================
Run a few replications over two rho values and two match ratios, then
summarise bias, RMSE and sensitivity by method.
"""

import pandas as pd
from pilotmatch import GridSpec, run_grid

pd.set_option("display.width", 120)

grid   = GridSpec(rhos=(0.0, 0.9), ks=(1, 3), n=2_000, p=10)
result = run_grid(grid, n_reps=20, progress=True)

print(result.summary().round(3))
result.to_csv("results/small_grid.csv")

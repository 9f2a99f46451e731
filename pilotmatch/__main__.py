"""
Command-line driver for one rho value of the simulation grid.

    python -m pilotmatch RHO P NSIM [options]

Runs NSIM replications for every match ratio in ``--ks`` at the given rho and
covariate dimension, writing one CSV per (rho, k) cell. A full sweep launches
one such process per rho (see ``scripts/batch_driver.sh``).
"""
from __future__ import annotations

import argparse
import logging
import sys

from ._exceptions import ConfigurationError
from .config import DEFAULT_KS, DEFAULT_N, DEFAULT_SEED, DEFAULT_SIGMA, DEFAULT_TARGET_TREATED, DEFAULT_TAU, SimulationConfig
from .estimators import METHODS, ORACLE_METHODS
from .simulation import run_cell_to_file

logger = logging.getLogger("pilotmatch")

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pilotmatch",
        description="Monte Carlo comparison of propensity, Mahalanobis and prognostic matching.",
    )
    parser.add_argument("rho", type=float, help="propensity-prognosis correlation knob in [0, 1]")
    parser.add_argument("p", type=int, help="covariate dimension")
    parser.add_argument("nsim", type=int, help="replications per (rho, k) cell")
    parser.add_argument("--ks", type=int, nargs="+", default=list(DEFAULT_KS), help="match ratios to run")
    parser.add_argument("--n", type=int, default=DEFAULT_N, help="sample size")
    parser.add_argument("--target-treated", type=float, default=DEFAULT_TARGET_TREATED,
                        help="expected number of treated units used to calibrate the intercept")
    parser.add_argument("--sigma", type=float, default=DEFAULT_SIGMA, help="outcome noise sd")
    parser.add_argument("--tau", type=float, default=DEFAULT_TAU, help="true treatment effect")
    parser.add_argument("--nu", type=float, default=0.0, help="weight of the unobserved confounder")
    parser.add_argument("--methods", nargs="+", default=list(METHODS),
                        choices=list(METHODS + ORACLE_METHODS), help="methods to run")
    parser.add_argument("--caliper", type=float, default=None,
                        help="propensity caliper for prognostic matching, in sd units")
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="base random seed")
    parser.add_argument("--output-dir", default="results", help="directory for result files")
    parser.add_argument("--diagnostics", action="store_true", help="add true-score balance columns")
    parser.add_argument("--skip-existing", action="store_true", help="do not rerun cells whose file exists")
    parser.add_argument("--progress", action="store_true", help="show a progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=_LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    if args.nsim <= 0:
        parser.error(f"nsim must be positive, got {args.nsim}")
    try:
        configs = [
            SimulationConfig(
                n=args.n, p=args.p, rho=args.rho, k=k, sigma=args.sigma, tau=args.tau,
                target_treated=args.target_treated, nu=args.nu,
            )
            for k in args.ks
        ]
    except ConfigurationError as exc:
        parser.error(str(exc))

    options = {"prognostic": {"caliper": args.caliper}} if args.caliper is not None else None
    logger.info(
        "rho=%s p=%d nsim=%d ks=%s methods=%s (intercept c=%.4f)",
        args.rho, args.p, args.nsim, args.ks, args.methods, configs[0].intercept,
    )
    for config in configs:
        run_cell_to_file(
            config,
            args.nsim,
            args.output_dir,
            methods=args.methods,
            seed=args.seed,
            diagnostics=args.diagnostics,
            progress=args.progress,
            skip_existing=args.skip_existing,
            estimator_options=options,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())

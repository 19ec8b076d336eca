#!/usr/bin/env python3
"""Run the five-state agent model on a preferential-attachment network.

Prints daily state counts (H/I/S/R/F) and, with --output, saves the
per-day snapshots, daily counts, edges and node positions to an .npz
archive for plotting.

Usage:
    python scripts/run_network.py
    python scripts/run_network.py --nodes 500 --days 120 --policy timer
    python scripts/run_network.py --cascades --output results/network_run.npz

References:
    - epinet/model.py: run_network_simulation
    - epinet/agents.py: AgentStateMachine, run_network_epidemic
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from epinet.config import default_config, load_config, validate_config
from epinet.model import run_network_simulation
from epinet.perf import PerfMonitor
from epinet.types import AgentState


def main():
    parser = argparse.ArgumentParser(
        description="Simulate the agent epidemic on a scale-free contact network.",
        epilog="Example: python scripts/run_network.py --nodes 200 --policy timer",
    )
    parser.add_argument("--config", type=str, default=None,
                        help="Base config YAML (default: built-in defaults)")
    parser.add_argument("--seed", type=int, default=None, help="Master seed override")
    parser.add_argument("--nodes", type=int, default=None, help="Number of agents")
    parser.add_argument("--days", type=int, default=None, help="Days to simulate")
    parser.add_argument("--policy", choices=["probability", "timer"], default=None,
                        help="Timed-transition update policy")
    parser.add_argument("--cascades", action="store_true",
                        help="Allow same-day cascading transitions")
    parser.add_argument("--every", type=int, default=1,
                        help="Print every N-th day (default: 1)")
    parser.add_argument("--output", type=str, default=None,
                        help="Save results to this .npz file")
    parser.add_argument("--perf", action="store_true", help="Print timing breakdown")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    config = load_config(args.config) if args.config else default_config()
    if args.seed is not None:
        config.simulation.seed = args.seed
    if args.nodes is not None:
        config.network.n_nodes = args.nodes
    if args.days is not None:
        config.agents.n_days = args.days
    if args.policy is not None:
        config.agents.update_policy = args.policy
    if args.cascades:
        config.agents.allow_same_day_cascades = True
    validate_config(config)

    perf = PerfMonitor(enabled=args.perf)
    result = run_network_simulation(config, perf=perf)

    print("=" * 60)
    print(f"EpiNet network run: {result.graph.n_nodes} agents, "
          f"{result.graph.n_edges} edges, policy '{config.agents.update_policy}'"
          f"{', cascading' if config.agents.allow_same_day_cascades else ''}")
    print("=" * 60)
    print(f"{'day':>5} " + " ".join(f"{s.symbol:>6}" for s in AgentState))
    for day, counts in enumerate(result.daily_counts):
        if day % args.every == 0 or day == result.days_completed:
            print(f"{day:>5} " + " ".join(f"{int(c):>6}" for c in counts))

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        recorded_days = np.array([s.day for s in result.snapshots])
        states = np.vstack([s.states for s in result.snapshots])
        np.savez_compressed(
            out,
            days=recorded_days,
            states=states,
            daily_counts=result.daily_counts,
            edges=result.graph.edges,
            positions=result.graph.positions,
        )
        print(f"\nSaved {len(recorded_days)} snapshots to {out}")

    if args.perf:
        print()
        print(perf.report())


if __name__ == "__main__":
    main()

"""
Main entry point for the FC2Q testbed.

This script initializes logging, loads the experiment from
config/sim_config.toml, builds the simulated multi-tier application and its
FC2Q application manager, and runs the sample/control loop on simulated time.
When the run is over it prints the run metrics and plots the results.
"""

import logging
import os

from manager.exceptions import ConfigurationError
from simulation.central_config import load_simulation_config
from simulation.plot_sim_results import plot_sim_results
from simulation.run_simulation import run_managed_simulation
from utils.logger import setup_logging


def parse_args(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        description="Run the FC2Q capacity controller on a simulated multi-tier application."
    )
    parser.add_argument(
        "--config",
        default=os.path.join(os.path.dirname(__file__), "config", "sim_config.toml"),
        help="Path to sim_config.toml (default: config/sim_config.toml)",
    )
    parser.add_argument(
        "--data-file",
        default=None,
        help="Write the per-control CSV log to this file (overrides the config).",
    )
    parser.add_argument(
        "--save",
        default=None,
        help="Save the result plot to this PNG file.",
    )
    parser.add_argument(
        "--no-show",
        action="store_true",
        help="Do not open the interactive plot window.",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    setup_logging()
    main_log = logging.getLogger("main")
    main_log.info("Application starting...")

    try:
        sim, manager, duration = load_simulation_config(args.config)
    except ConfigurationError as e:
        main_log.critical("Invalid configuration: %s", e)
        return 1
    main_log.info("Configuration file '%s' loaded.", args.config)

    if args.data_file:
        manager.export_data_to(args.data_file)

    try:
        trace = run_managed_simulation(sim, manager, duration)
    except ConfigurationError as e:
        main_log.critical("Unable to start the application manager: %s", e)
        return 1
    except KeyboardInterrupt:
        main_log.info("Keyboard interrupt received. Shutting down.")
        return 0
    finally:
        manager.close()

    main_log.info(
        "Run finished: %d controls (%d skipped, %d failed).",
        manager.ctl_count, manager.ctl_skip_count, manager.ctl_fail_count,
    )
    plot_sim_results(sim, trace, manager, save_path=args.save, show=not args.no_show)
    main_log.info("Application finished.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

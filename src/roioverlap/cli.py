"""Unified CLI entry point for roioverlap.

BIDS App usage::

    roioverlap <input_root> <output_dir> participant \\
        [--participant-label LABEL [LABEL ...]] \\
        [--session-label ID [ID ...]] \\
        [--tasks TASK [TASK ...]] \\
        [--roi-dir DIR] [--config CONFIG.toml] \\
        [--cluster-threshold Z] [--secondary-threshold Z] \\
        [--reference-threshold LABEL] \\
        [--force] [--n-jobs N] [--n-procs N]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


def _build_bids_parser() -> argparse.ArgumentParser:
    """Build the BIDS App-style argument parser."""
    parser = argparse.ArgumentParser(
        prog="roioverlap",
        description=(
            "Quantify overlap between activation maps (GLM Z-stat, TFCE, ICA) and anatomical ROIs. "
            "Follows the BIDS App positional-argument convention: "
            "roioverlap <input_root> <output_dir> <analysis_level>."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # --- BIDS App required positional arguments ---
    parser.add_argument(
        "input_root",
        type=Path,
        help="Root directory of the fMRIPrep + FEAT derivatives (sub-<id>/[ses-<id>/]anat, func, fsl_stats).",
    )
    parser.add_argument(
        "output_dir",
        type=Path,
        help="Output directory where ROI masks, derived maps and reports will be written.",
    )
    parser.add_argument(
        "analysis_level",
        choices=["participant"],
        help="Level of analysis. Only 'participant' is supported at this time.",
    )

    # --- BIDS App standard optional arguments ---
    parser.add_argument(
        "--participant-label",
        nargs="+",
        dest="participant_label",
        metavar="LABEL",
        help=(
            "One or more participant labels to process (without the 'sub-' prefix). "
            "Processes all participants if not specified."
        ),
    )
    parser.add_argument(
        "--session-label",
        nargs="+",
        dest="session_label",
        metavar="ID",
        help=(
            "One or more session labels to process (without the 'ses-' prefix). "
            "Processes all sessions if not specified."
        ),
    )
    parser.add_argument(
        "--tasks",
        nargs="+",
        metavar="TASK",
        help="Tasks to process (without the 'task-' prefix). Processes every configured task if not specified.",
    )

    # --- ROI and threshold configuration ---
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a TOML configuration file (task/ROI tables, thresholds, hemisphere convention).",
    )
    parser.add_argument(
        "--roi-dir",
        type=Path,
        dest="roi_dir",
        help="Directory holding the ROI templates (<name>.nii.gz).",
    )
    parser.add_argument(
        "--cluster-threshold",
        type=float,
        default=None,
        dest="cluster_threshold",
        help="Primary Z threshold of the cluster-corrected FEAT map. Default: 3.1.",
    )
    parser.add_argument(
        "--secondary-threshold",
        type=float,
        default=None,
        dest="secondary_threshold",
        help="Secondary Z threshold derived from the brain-masked Z map. Default: 2.35.",
    )
    parser.add_argument(
        "--reference-threshold",
        default=None,
        dest="reference_threshold",
        metavar="LABEL",
        help="Z threshold label TFCE and ICA maps are compared against. Default: the primary threshold.",
    )

    # --- Processing options ---
    parser.add_argument(
        "--force",
        action="store_true",
        help="Recompute existing reports and derived volumes.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        dest="log_level",
        help="Logging verbosity. Default: INFO.",
    )
    parser.add_argument(
        "--n-jobs",
        type=int,
        default=None,
        dest="n_jobs",
        help="Number of tasks processed in parallel within a subject. Default: 1.",
    )
    parser.add_argument(
        "--n-procs",
        type=int,
        default=None,
        dest="n_procs",
        help="Number of subjects processed in parallel. Default: 1.",
    )

    return parser


def _to_pipeline_namespace(args: argparse.Namespace) -> argparse.Namespace:
    """Translate BIDS App argument names to the format expected by ``load_config``."""
    return argparse.Namespace(
        input_root=args.input_root,
        output_dir=args.output_dir,
        subjects=args.participant_label,
        sessions=args.session_label,
        tasks=args.tasks,
        roi_dir=args.roi_dir,
        cluster_threshold=args.cluster_threshold,
        secondary_threshold=args.secondary_threshold,
        reference_threshold=args.reference_threshold,
        force=args.force,
        log_level=args.log_level,
        n_jobs=args.n_jobs,
        n_procs=args.n_procs,
        config=args.config,
    )


def _run_bids_app(args: argparse.Namespace) -> int:
    """Load the configuration and run the post-stats workflow.

    Returns 1 when any subject failed, 0 otherwise.
    """
    from roioverlap.interfaces.feat.feat import load_config, run_post_stats

    config = load_config(_to_pipeline_namespace(args))
    failed: list[str] = []
    run_post_stats(config, failed=failed)
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    """Unified entry point for the roioverlap CLI.

    Returns 0 on success and 1 when no arguments are given, the workflow
    fails (e.g. on an invalid configuration) or any subject fails.
    """
    argv = list(argv) if argv is not None else sys.argv[1:]

    # --- No arguments: print help and exit ---
    if not argv:
        _build_bids_parser().print_help()
        return 1

    parser = _build_bids_parser()
    args = parser.parse_args(argv)

    try:
        return _run_bids_app(args)
    except Exception:
        logging.getLogger(__name__).exception("Post-stats workflow failed")
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

#!/usr/bin/env python3
"""
Command-line entry point for Sparse ICP point cloud registration.

Loads two point clouds, registers the first (moving) onto the second
(reference) and reports the recovered rigid motion.
"""

import argparse
import logging
import sys

import numpy as np

from sparseicp import ConfigurationError, SparseICP, SparseICPConfig
from sparseicp.config import IcpMethod


def build_parser():
    parser = argparse.ArgumentParser(
        description='Sparse ICP Point Cloud Registration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Point-to-point Sparse ICP
  python run_icp.py register pcloud/moving.ply pcloud/reference.ply

  # Point-to-plane, more aggressive sparsity, save results and plot
  python run_icp.py register pcloud/moving.ply pcloud/reference.ply --method point_to_plane --p 0.4 --save icp_results.pkl --plot

  # Show previously saved results
  python run_icp.py load --file icp_results.pkl
        """
    )

    subparsers = parser.add_subparsers(dest='mode', help='Mode')

    register_parser = subparsers.add_parser('register', help='Register two point clouds')
    register_parser.add_argument('source', type=str, help='Path to the moving point cloud')
    register_parser.add_argument('target', type=str, help='Path to the reference point cloud')
    register_parser.add_argument('--method', type=str, default=IcpMethod.POINT_TO_POINT.value,
                                 choices=[m.value for m in IcpMethod],
                                 help='Alignment step used inside the ADMM loop')
    register_parser.add_argument('--k-normals', type=int, default=10,
                                 help='Neighbors per normal estimate (>= 4)')
    register_parser.add_argument('--outer', type=int, default=30,
                                 help='Outer (correspondence) iterations')
    register_parser.add_argument('--inner', type=int, default=5,
                                 help='Inner (ADMM) iterations per outer iteration')
    register_parser.add_argument('--mu', type=float, default=10.0,
                                 help='ADMM penalty weight (> 0)')
    register_parser.add_argument('--shrink-iterations', type=int, default=3,
                                 help='Fixed-point iterations of the shrink operator')
    register_parser.add_argument('--p', type=float, default=0.5,
                                 help='Norm exponent in (0, 2); smaller is sparser')
    register_parser.add_argument('--jobs', type=int, default=1,
                                 help='Workers for nearest neighbor queries (-1 for all cores)')
    register_parser.add_argument('--tolerance', type=float, default=None,
                                 help='Stop once the mean distance falls below this')
    register_parser.add_argument('--verbose', action='store_true',
                                 help='Log every correspondence and step transform')
    register_parser.add_argument('--save', type=str, default=None,
                                 help='Pickle the results to this file')
    register_parser.add_argument('--output', type=str, default=None,
                                 help='Write the moved cloud to this point cloud file')
    register_parser.add_argument('--plot', action='store_true',
                                 help='Plot the convergence curve')

    load_parser = subparsers.add_parser('load', help='Show previously saved results')
    load_parser.add_argument('--file', type=str, default='icp_results.pkl',
                             help='Path to saved results file')

    return parser


def config_from_args(args):
    return SparseICPConfig(
        k_normals=args.k_normals,
        outer_iterations=args.outer,
        inner_iterations=args.inner,
        mu=args.mu,
        shrink_iterations=args.shrink_iterations,
        p=args.p,
        method=args.method,
        verbose=args.verbose,
        n_jobs=args.jobs,
        tolerance=args.tolerance,
    )


def run_registration(args):
    """Load both clouds, run Sparse ICP and report. Returns a process exit code."""
    from sparseicp.point_cloud import PointCloud

    print("\n" + "="*80)
    print("Sparse ICP Registration")
    print("="*80)

    print(f"\nLoading point clouds...")
    print(f"  Source: {args.source}")
    print(f"  Target: {args.target}")
    source = PointCloud.from_file(args.source)
    target = PointCloud.from_file(args.target)
    print(f"  Source points: {len(source):,}")
    print(f"  Target points: {len(target):,}")

    config = config_from_args(args)
    try:
        icp = SparseICP.from_config(source.points, target.points, config)
    except ConfigurationError as e:
        print(f"\nInvalid configuration: {e}")
        return 2

    print(f"\nRunning Sparse ICP (method={icp.config.method.value}, p={config.p}, "
          f"mu={config.mu}, outer={config.outer_iterations}, inner={config.inner_iterations})...")
    if not icp.run():
        print("\nRegistration failed.")
        return 1

    transform = icp.get_computed_transform()
    mean_distances = icp.mean_distances

    print(f"\n{'='*80}")
    print("RESULTS")
    print("="*80)
    if mean_distances:
        print(f"Initial mean distance: {mean_distances[0]:.6f}")
        print(f"Final mean distance:   {mean_distances[-1]:.6f}")
    print(f"\nRotation:\n{transform.rotation}")
    print(f"Translation: {transform.translation}")
    print(f"\nTransformation matrix:")
    print(transform.matrix)

    if args.save:
        icp.save_result(args.save)

    if args.output:
        moved = PointCloud(icp.get_moved_cloud(), normals=icp.get_moved_normals(),
                           colors=source.colors)
        moved.save(args.output)
        print(f"Moved cloud written to {args.output}")

    if args.plot and mean_distances:
        from sparseicp.visualization import plot_convergence
        plot_convergence(mean_distances, tolerance=config.tolerance,
                         title=f"{icp.config.method.value}, p={config.p}, mu={config.mu}")
    return 0


def show_saved_result(filepath):
    """Print previously saved results. Returns a process exit code."""
    result = SparseICP.load_result(filepath)
    if result is None:
        print(f"No saved results found at {filepath}")
        return 1

    print(f"\nLoaded results:")
    if result['mean_distances']:
        print(f"  Final distance: {result['mean_distances'][-1]:.6f}")
    print(f"  Outer iterations: {max(len(result['intermediate_transforms']) - 1, 0)}")
    print(f"  Configuration: {result['config']}")
    print(f"\nTransformation matrix:")
    print(np.array2string(result['transformation'], precision=6))
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if args.mode == 'register':
        return run_registration(args)
    elif args.mode == 'load':
        return show_saved_result(args.file)

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())

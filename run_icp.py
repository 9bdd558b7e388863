#!/usr/bin/env python3
"""
Main entry point for ICP point cloud registration.

This script provides a command-line interface for registering a source
point cloud file onto a target point cloud file.
"""

import argparse
import sys

import numpy as np

from icpreg import IcpDriver, IcpParameters, IcpError, PointCloud, matrix_to_twist


def load_cloud(path, normals_k):
    """Load a point cloud, estimating normals when the file carries none."""
    cloud = PointCloud.from_file(path)
    if not cloud.has_normals and normals_k > 0:
        cloud.estimate_normals(k=normals_k)
    return cloud


def run_registration(source_path, target_path, method='point_to_plane', loss_fn='none',
                     loss_params=None, parameters=None, normals_k=30, verbose=False):
    """Run ICP registration and return the results."""
    print("\n" + "="*80)
    print("ICP Registration")
    print("="*80)

    print("\nLoading point clouds...")
    print(f"  Source: {source_path}")
    print(f"  Target: {target_path}")

    source = load_cloud(source_path, normals_k)
    target = load_cloud(target_path, normals_k)

    print(f"  Source points: {len(source)}")
    print(f"  Target points: {len(target)}")

    icp = IcpDriver(error_model=method, mestimator=loss_fn,
                    mestimator_params=loss_params, parameters=parameters,
                    verbose=verbose)
    icp.set_input_target(target)
    icp.set_input_source(source)

    print(f"\nRunning ICP (method={method}, loss={loss_fn})...")
    results = icp.run()

    print(f"\n{'='*80}")
    print("RESULTS")
    print("="*80)
    print(results)
    print(f"Iterations: {results.iterations}")
    print(f"Twist (tx, ty, tz, wx, wy, wz): {matrix_to_twist(results.transformation)}")
    return results


def build_parser():
    parser = argparse.ArgumentParser(
        description='ICP Point Cloud Registration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Point-to-plane ICP
  python run_icp.py register scan1.ply scan2.ply

  # Point-to-point ICP with a robust loss
  python run_icp.py register scan1.ply scan2.ply --method point_to_point --loss huber

  # Reject matches further than 0.05 and allow 50 iterations
  python run_icp.py register scan1.ply scan2.ply --max-distance 0.05 --max-iter 50
        """
    )

    subparsers = parser.add_subparsers(dest='mode', help='Registration mode')

    register_parser = subparsers.add_parser('register', help='Register SOURCE onto TARGET')
    register_parser.add_argument('source', type=str, help='Path to source point cloud')
    register_parser.add_argument('target', type=str, help='Path to target point cloud')
    register_parser.add_argument('--method', type=str, default='point_to_plane',
                                 choices=['point_to_plane', 'point_to_point'],
                                 help='Error model (default: point_to_plane)')
    register_parser.add_argument('--loss', type=str, default='none',
                                 choices=['none', 'huber', 'tukey', 'percentile'],
                                 help='Robust M-estimator')
    register_parser.add_argument('--delta', type=float, default=None,
                                 help='Huber threshold (in robust scale units)')
    register_parser.add_argument('--c', type=float, default=None,
                                 help='Tukey tuning constant')
    register_parser.add_argument('--percentile', type=float, default=None,
                                 help='Percentile filter threshold')
    register_parser.add_argument('--max-iter', type=int, default=10,
                                 help='Maximum number of iterations')
    register_parser.add_argument('--min-variation', type=float, default=1e-4,
                                 help='Stop when the error changes by less than this')
    register_parser.add_argument('--max-distance', type=float, default=np.inf,
                                 help='Maximum correspondence distance')
    register_parser.add_argument('--lambda', dest='lambda_', type=float, default=1.0,
                                 help='Damping factor applied to each increment')
    register_parser.add_argument('--initial-guess', type=float, nargs=6, default=None,
                                 metavar=('TX', 'TY', 'TZ', 'WX', 'WY', 'WZ'),
                                 help='Initial pose as a twist, translation first then rotation '
                                      'vector (default: identity)')
    register_parser.add_argument('--normals-k', type=int, default=30,
                                 help='Neighbours for normal estimation (0 disables)')
    register_parser.add_argument('--jobs', type=int, default=1,
                                 help='Parallel workers for nearest neighbor queries')
    register_parser.add_argument('--verbose', action='store_true',
                                 help='Print per-iteration progress')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.mode is None:
        parser.print_help()
        return 2

    loss_params = {key: getattr(args, key) for key in ('delta', 'c', 'percentile')
                   if getattr(args, key) is not None}
    parameters = IcpParameters(
        lambda_=args.lambda_,
        max_iter=args.max_iter,
        min_variation=args.min_variation,
        max_correspondance_distance=args.max_distance,
        initial_guess=args.initial_guess,
        n_jobs=args.jobs,
    )

    try:
        run_registration(
            args.source,
            args.target,
            method=args.method,
            loss_fn=args.loss,
            loss_params=loss_params,
            parameters=parameters,
            normals_k=args.normals_k,
            verbose=args.verbose,
        )
    except IcpError as e:
        print(f"\n✗ Registration failed: {e}", file=sys.stderr)
        if e.results is not None and e.results.registration_error:
            print(f"  Partial error history: {e.results.registration_error}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

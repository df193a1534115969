#!/usr/bin/env python
"""
reconstruct.py - Fit an RBF implicit surface to an oriented point cloud.

Usage:
    python -m rbf_surface --input cloud.xyz
    python -m rbf_surface --input cloud.xyz --auto-offset --grid-resolution 64 --output field.mat
    python -m rbf_surface --input cloud.xyz --model-output model.mat --verbose
"""

import argparse
import json
import sys
from typing import Any, Dict

from .bounds import BoundingBox, evaluate_grid
from .errors import RBFSurfaceError
from .kernels import KERNELS
from .model import RBFModel
from .samples import SampleGenerator
from .storage import load_point_cloud, save_grid, save_model


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Reconstruct an implicit surface from an oriented point cloud',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fit with the default cubic kernel and fixed 0.01 offsets
  python -m rbf_surface --input bunny.xyz

  # Density-relative offsets, sample the field on a 64^3 grid
  python -m rbf_surface --input bunny.xyz --auto-offset --grid-resolution 64 --output field.mat
        """
    )

    parser.add_argument('--input', type=str, required=False,
                        help='Point cloud file (x y z nx ny nz per line)')
    parser.add_argument('--list-kernels', action='store_true',
                        help='List available kernels')

    SampleGenerator.add_argparse_args(parser)
    RBFModel.add_argparse_args(parser)

    # Grid sampling
    parser.add_argument('--grid-resolution', type=int, default=None,
                        help='Sample the field on an N^3 grid over the padded bounds (requires --output)')
    parser.add_argument('--padding', type=float, default=0.1,
                        help='Grid padding as a fraction of the largest extent')

    # Output options
    parser.add_argument('--output', type=str, default=None,
                        help='Output .mat file for the sampled grid (requires --grid-resolution)')
    parser.add_argument('--model-output', type=str, default=None,
                        help='Output .mat file for centers and coefficients')
    parser.add_argument('--json-output', type=str, default=None,
                        help='Output file for the build summary (JSON format)')
    parser.add_argument('--verbose', action='store_true',
                        help='Print build progress')
    parser.add_argument('--quiet', action='store_true',
                        help='Suppress non-essential output')

    return parser.parse_args(argv)


def build_generator_kwargs(args) -> Dict[str, Any]:
    """Keyword arguments for SampleGenerator."""
    return {
        'offset': args.offset,
        'value': args.value,
        'normal_eps': args.normal_eps,
        'auto_offset': args.auto_offset,
        'offset_fraction': args.offset_fraction,
    }


def build_model_kwargs(args) -> Dict[str, Any]:
    """Keyword arguments for RBFModel."""
    return {
        'kernel': args.kernel,
        'solver': args.solver,
        'rcond': args.rcond,
        'block_size': args.block_size,
        'n_workers': args.n_workers,
        'eps': args.eps,
    }


def format_results(result, args, offset: float) -> Dict[str, Any]:
    """Build summary as a JSON-serializable dict."""
    return {
        'input': args.input,
        'n_samples': result.n_samples,
        'n_centers': result.n_centers,
        'rank': result.rank,
        'residual_norm': result.residual_norm,
        'max_abs_residual': result.max_abs_residual,
        'build_time': result.build_time,
        'config': {
            'offset': offset,
            'value': args.value,
            **build_model_kwargs(args),
        },
    }


def print_results(result, quiet: bool = False):
    """Print build results to console."""
    if quiet:
        print(f"Residual: {result.residual_norm:.4e}")
        print(f"Time: {result.build_time:.3f}s")
        return

    print("\n" + "=" * 60)
    print("Build Results")
    print("=" * 60)
    print(f"  Samples:          {result.n_samples}")
    print(f"  Centers:          {result.n_centers}")
    print(f"  Rank:             {result.rank}")
    print(f"  Residual norm:    {result.residual_norm:.6e}")
    print(f"  Max abs residual: {result.max_abs_residual:.6e}")
    print(f"  Build time:       {result.build_time:.4f} seconds")
    print("=" * 60)


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.list_kernels:
        print("\nAvailable kernels:")
        for name in KERNELS:
            print(f"  - {name}")
        return 0

    if not args.input:
        print("Error: --input is required", file=sys.stderr)
        return 1

    if (args.output is None) != (args.grid_resolution is None):
        print("Error: --output and --grid-resolution must be given together", file=sys.stderr)
        return 1

    try:
        generator = SampleGenerator(**build_generator_kwargs(args))
        model = RBFModel(**build_model_kwargs(args))

        points = load_point_cloud(args.input, verbose=not args.quiet)
        offset = generator.resolve_offset(points)
        samples = generator.generate(points, verbose=args.verbose, offset=offset)

        if not args.quiet:
            print("\nBuilding...")
        result = model.build(samples, verbose=args.verbose)
        print_results(result, quiet=args.quiet)

        if args.model_output:
            save_model(args.model_output, model)
            if not args.quiet:
                print(f"Model saved to: {args.model_output}")

        if args.grid_resolution is not None:
            bbox = BoundingBox.from_points(points).padded(args.padding)
            values = evaluate_grid(model, bbox, args.grid_resolution, verbose=args.verbose)
            save_grid(args.output, values, bbox)
            if not args.quiet:
                print(f"Grid saved to: {args.output}")

        if args.json_output:
            with open(args.json_output, 'w') as f:
                json.dump(format_results(result, args, offset), f, indent=2)
            if not args.quiet:
                print(f"JSON results saved to: {args.json_output}")

    except (RBFSurfaceError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())

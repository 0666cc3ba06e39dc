"""
ScanRNN CLI

Equivalence checks and benchmarks for the scan engine and its fused backend.

Usage:
    # Compare stacked vs fused networks
    python -m scan_rnn check                          # every fused cell type
    python -m scan_rnn check lstm gru --layers 3
    python -m scan_rnn check rnn_tanh --hetero        # per-layer fused fallback

    # Time stacked vs fused forward + backward
    python -m scan_rnn benchmark lstm --hidden 256 --seq 100
    python -m scan_rnn benchmark gru -o gru.json

    # Other commands
    python -m scan_rnn info

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

import argparse
import sys
import warnings

import torch

from .core.fused import GATES, FusedRecurrent, compare
from .core.registry import build_cell, list_registered
from .core.stacked import StackedNetwork


FUSED_CELLS = [t.value for t in GATES]


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_check(args):
    """Run backend-equivalence checks."""
    device = 'cuda' if torch.cuda.is_available() and not args.cpu else 'cpu'
    dtype = torch.float64
    cells = args.cells or FUSED_CELLS

    print(f"Device: {device}")
    print(f"Shape: T={args.seq}, B={args.batch}, input={args.input}")
    print("=" * 60)

    passed = 0
    failed = 0

    for name in cells:
        hidden_sizes = [args.hidden] * args.layers
        if args.hetero:
            hidden_sizes = [args.hidden + 2 * i for i in range(args.layers)]
        print(f"\nChecking {name} {hidden_sizes}...")

        try:
            sizes = [args.input] + hidden_sizes
            layer_cells = [build_cell(name, sizes[i], sizes[i + 1]) for i in range(args.layers)]
            stacked = StackedNetwork(layer_cells, dtype=dtype, device=device)

            with warnings.catch_warnings():
                warnings.simplefilter('ignore', RuntimeWarning)
                fused = FusedRecurrent.from_network(stacked, persist_hidden=False)

            x = torch.randn(args.seq, args.batch, args.input, dtype=dtype, device=device)
            report = compare(stacked, fused, x, rtol=args.rtol, atol=args.atol)

            for line in report.summary().splitlines():
                print(f"  {line}")
            if report.passed:
                passed += 1
            else:
                failed += 1

        except Exception as e:
            print(f"  ✗ {name}: {e}")
            failed += 1

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    return 0 if failed == 0 else 1


def cmd_benchmark(args):
    """Benchmark stacked vs fused."""
    from .core.benchmark import run

    if args.cell not in FUSED_CELLS:
        print(f"Unknown fused cell: {args.cell}")
        print(f"Available: {', '.join(FUSED_CELLS)}")
        return 1

    device = 'cpu' if args.cpu else 'cuda'
    result = run(
        cell=args.cell,
        input_size=args.input,
        hidden_size=args.hidden,
        num_layers=args.layers,
        batch_size=args.batch,
        seq_len=args.seq,
        iters=args.iters,
        warmup=args.warmup,
        device=device,
        verbose=not args.quiet,
    )

    if args.quiet:
        print(result.summary())

    if args.output:
        result.save(args.output)
        print(f"\nSaved to {args.output}")

    return 0 if result.equivalent else 1


def cmd_info(args):
    """Show library info."""
    print("ScanRNN")
    print("=" * 60)
    print()
    print("Recurrent networks as scans over weight-tied step-units.")
    print("Explicit backward through time, stacked or bidirectional.")
    print()
    print("Registered cells:")
    for name in sorted(list_registered()):
        fused = 'fused' if name in FUSED_CELLS else 'stacked only'
        print(f"  - {name:<10} ({fused})")
    print()
    print("Compositions:")
    print("  depth_outer   each layer scans the whole sequence")
    print("  time_outer    every layer runs once per step")
    print()

    # System info
    print("System:")
    print(f"  PyTorch: {torch.__version__}")
    print(f"  CUDA: {torch.cuda.is_available()}", end="")
    if torch.cuda.is_available():
        print(f" ({torch.cuda.get_device_name(0)})")
    else:
        print()
    print(f"  cuDNN: {torch.backends.cudnn.is_available()}")
    print()
    print("Usage:")
    print("  python -m scan_rnn check lstm gru")
    print("  python -m scan_rnn benchmark lstm --hidden 256 --seq 100")
    return 0


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='scan_rnn',
        description='ScanRNN - recurrent networks as scans over step-units'
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # check
    check_parser = subparsers.add_parser('check', help='Compare stacked vs fused networks')
    check_parser.add_argument('cells', nargs='*', help=f"Cell types ({', '.join(FUSED_CELLS)})")
    check_parser.add_argument('--input', type=int, default=8, help='Input size')
    check_parser.add_argument('--hidden', type=int, default=16, help='Hidden size')
    check_parser.add_argument('--layers', '-l', type=int, default=2, help='Number of layers')
    check_parser.add_argument('--hetero', action='store_true', help='Different hidden size per layer')
    check_parser.add_argument('--batch', '-b', type=int, default=3, help='Batch size')
    check_parser.add_argument('--seq', '-t', type=int, default=5, help='Sequence length')
    check_parser.add_argument('--rtol', type=float, default=1e-6, help='Relative tolerance')
    check_parser.add_argument('--atol', type=float, default=1e-8, help='Absolute tolerance')
    check_parser.add_argument('--cpu', action='store_true', help='Force CPU')

    # benchmark
    bench_parser = subparsers.add_parser('benchmark', help='Time stacked vs fused')
    bench_parser.add_argument('cell', nargs='?', default='lstm', help='Cell type')
    bench_parser.add_argument('--input', type=int, default=64, help='Input size')
    bench_parser.add_argument('--hidden', type=int, default=128, help='Hidden size')
    bench_parser.add_argument('--layers', '-l', type=int, default=2, help='Number of layers')
    bench_parser.add_argument('--batch', '-b', type=int, default=32, help='Batch size')
    bench_parser.add_argument('--seq', '-t', type=int, default=50, help='Sequence length')
    bench_parser.add_argument('--iters', '-i', type=int, default=10, help='Iterations')
    bench_parser.add_argument('--warmup', '-w', type=int, default=2, help='Warmup iterations')
    bench_parser.add_argument('-q', '--quiet', action='store_true', help='Quiet mode')
    bench_parser.add_argument('-o', '--output', help='Save results to JSON file')
    bench_parser.add_argument('--cpu', action='store_true', help='Force CPU')

    # info
    subparsers.add_parser('info', help='Show library info')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'check':
        return cmd_check(args)
    elif args.command == 'benchmark':
        return cmd_benchmark(args)
    elif args.command == 'info':
        return cmd_info(args)

    return 0


if __name__ == '__main__':
    sys.exit(main())

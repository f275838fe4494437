"""
Rademacher Prover Command-Line Interface

Commands:
- generate: build the bound table and save it
- d A X: evaluate D(a, x) directly and look it up in the table
- run CASE: prove a case file against the table
- shell: interactive loop accepting run(name), D(a, x) and generate
- version
"""

import sys
import argparse
import time
from pathlib import Path
from typing import Optional

from . import __version__
from .bounds import BoundTable, TableConfig, INTEGRATORS, prawitz_bound
from .exceptions import ProverError
from .persistence import (
    DEFAULT_CASES_DIR,
    DEFAULT_TABLE_PATH,
    load_case,
    load_table,
    parse_call,
    save_table,
)
from .receipts import ReceiptChain
from .report import format_machine, format_report, to_json
from .solver import EngineConfig, ProofEngine


PRESETS = {
    'default': TableConfig,
    'fast': TableConfig.fast,
    'reference': TableConfig.reference,
}


def _table_config(args) -> TableConfig:
    config = PRESETS[args.preset]()
    for name in ('coef_gran', 'thresh_gran', 'iterations', 'epsilon', 'integrator'):
        value = getattr(args, name, None)
        if value is not None:
            setattr(config, name, value)
    if getattr(args, 'processes', None) is not None:
        config.workers = args.processes
    config.verbose = not args.quiet
    # Re-validate after the overrides.
    config.__post_init__()
    return config


def _load_table(args) -> BoundTable:
    if getattr(args, 'baseline', False):
        return BoundTable.baseline()
    path = Path(args.table)
    if not path.exists():
        raise ProverError(f"No table at {path}; run 'rademacher-prover generate' first")
    print(f"Reading bound table from {path}...")
    start = time.time()
    table = load_table(path)
    print(f"Finished reading table {table.shape}. Duration: {time.time() - start:.1f}s")
    return table


def cmd_generate(args):
    """Build the bound table and save it."""
    config = _table_config(args)
    print("=" * 60)
    print("Bound table generation")
    print("=" * 60)
    print(f"Coefficient granularity: {config.coef_gran}")
    print(f"Threshold granularity: {config.thresh_gran} (span +/-{config.threshold_span})")
    print(f"Iterations: {config.iterations}")
    print(f"Epsilon: {config.epsilon} ({config.integrator})")

    table = BoundTable.build(config)
    path = save_table(table, args.table)
    print(f"\nTable saved to: {path}")
    return 0


def _oracle_config(args) -> TableConfig:
    overrides = {name: getattr(args, name) for name in ('epsilon', 'integrator')
                 if getattr(args, name) is not None}
    return TableConfig(**overrides)


def _print_d(a: float, x: float, table: Optional[BoundTable], config: TableConfig):
    # A table that records its build settings evaluates D with them.
    if table is not None and table.config is not None:
        config = table.config
        direct = table.evaluate(a, x)
    else:
        direct = prawitz_bound(a, x, config.epsilon, config.integrator, config.min_coefficient)
    print(f"D({a}, {x}) = {direct:.10f}  (Prawitz, epsilon={config.epsilon}, {config.integrator})")
    if table is not None:
        row, col = table.cell_of(a, x)
        print(f"Table lookup: {table.lookup(a, x):.10f}  (row {row}, column {col})")
        print(f"With Bernstein: {table.get(a, x):.10f}")


def cmd_d(args):
    """Evaluate D(a, x)."""
    table = load_table(args.table) if Path(args.table).exists() else None
    _print_d(args.a, args.x, table, _oracle_config(args))
    return 0


def _engine_config(args) -> EngineConfig:
    return EngineConfig(
        max_workers=args.workers,
        short_circuit=args.short_circuit,
        check_coverage=args.check_coverage,
        oracle_contradiction=args.oracle_contradiction,
        max_nodes=args.max_nodes,
        verbose=not args.quiet,
    )


def _run_case(name: str, table: BoundTable, args) -> int:
    case = load_case(name, args.cases_dir)
    print(f"\nRunning case {case.name}...")
    start = time.time()
    certificate = ProofEngine(table, _engine_config(args)).prove(case)
    elapsed = time.time() - start

    print("\n" + "-" * 60)
    print("HUMAN-READABLE RESULTS")
    print("-" * 60)
    print(format_report(certificate))

    machine = format_machine(certificate)
    if machine:
        print("\n" + "-" * 60)
        print("MACHINE-READABLE RESULTS")
        print("-" * 60)
        print(machine)

    print(f"\nSimulation complete! Duration: {elapsed:.2f}s")
    if certificate.proved:
        print("All hypotheses proved!")
        if not certificate.rigorous:
            print("Warning: the bound table is not known to be rigorous; "
                  "this is not a proof.", file=sys.stderr)
    else:
        print("FAILED to prove all hypotheses!")

    if args.output:
        receipts = ReceiptChain.from_certificate(certificate)
        with open(args.output, 'w') as f:
            f.write(to_json(certificate, receipts))
        print(f"\nCertificate saved to: {args.output}")

    return 0 if certificate.proved else 1


def cmd_run(args):
    """Prove a case file."""
    table = _load_table(args)
    return _run_case(args.case, table, args)


def cmd_shell(args):
    """Interactive loop: run(name), D(a, x), generate, exit."""
    table = None
    while True:
        try:
            text = input("Enter instruction: ").strip()
        except EOFError:
            print()
            return 0
        if not text:
            continue
        if "(" not in text:
            text = f"{text}()"
        try:
            command, call_args = parse_call(text)
            if command in ('exit', 'quit'):
                return 0
            elif command == 'run':
                if len(call_args) != 1:
                    print("Expected format: run(name)")
                    continue
                if table is None:
                    table = _load_table(args)
                _run_case(call_args[0], table, args)
            elif command == 'd':
                if len(call_args) != 2:
                    print("Failed to parse arguments! Expected format: D(a,x)")
                    continue
                if table is None and Path(args.table).exists():
                    table = _load_table(args)
                _print_d(float(call_args[0]), float(call_args[1]), table, _oracle_config(args))
            elif command == 'generate':
                table = BoundTable.build(_table_config(args))
                save_table(table, args.table)
                print(f"Table saved to: {args.table}")
            else:
                print("Unknown command! Valid commands: run, d, generate, exit.")
        except (ProverError, OSError, ValueError) as e:
            print(f"Error: {e}")


def cmd_version(args):
    """Print version information."""
    print(f"rademacher-prover {__version__}")
    print("Certified tail bounds for Rademacher sums")
    return 0


def _add_run_options(parser):
    parser.add_argument('--cases-dir', type=str, default=DEFAULT_CASES_DIR,
                        help=f'Directory of case files (default: {DEFAULT_CASES_DIR})')
    parser.add_argument('--baseline', action='store_true',
                        help='Use the symmetry-only table instead of a table file')
    parser.add_argument('--output', '-o', type=str,
                        help='Write the certificate and receipt chain as JSON')
    parser.add_argument('--check-coverage', action='store_true',
                        help='Check that subcases cover the parent region')
    parser.add_argument('--short-circuit', action='store_true',
                        help='Stop at the first unresolved subcase')
    parser.add_argument('--oracle-contradiction', action='store_true',
                        help='Close Contradiction goals when no cell survives the oracle')
    parser.add_argument('--workers', '-w', type=int, default=1,
                        help='Threads for sibling subcases (default: 1)')
    parser.add_argument('--max-nodes', type=int, default=None,
                        help='Search budget per leaf (default: unlimited)')


def _add_table_options(parser):
    parser.add_argument('--preset', choices=list(PRESETS.keys()), default='default',
                        help='Starting configuration (default: default)')
    parser.add_argument('--coef-gran', type=int, help='Coefficient granularity')
    parser.add_argument('--thresh-gran', type=int, help='Threshold granularity')
    parser.add_argument('--iterations', type=int, help='Elimination sweeps')
    parser.add_argument('--processes', '-p', type=int,
                        help='Worker processes for precomputation #1 (default: all cores)')


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='rademacher-prover',
        description='Rademacher Prover - Certified Tail Bounds for Rademacher Sums'
    )
    parser.add_argument('--table', type=str, default=DEFAULT_TABLE_PATH,
                        help=f'Bound table file (default: {DEFAULT_TABLE_PATH})')
    parser.add_argument('--epsilon', '-e', type=float, default=None,
                        help='Integration error allowance')
    parser.add_argument('--integrator', choices=INTEGRATORS, default=None,
                        help='Integrator for the Prawitz bound')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Suppress progress output')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Generate command
    gen_parser = subparsers.add_parser('generate', help='Build and save the bound table')
    _add_table_options(gen_parser)
    gen_parser.set_defaults(func=cmd_generate)

    # D command
    d_parser = subparsers.add_parser('d', help='Evaluate D(a, x)')
    d_parser.add_argument('a', type=float, help='Largest coefficient')
    d_parser.add_argument('x', type=float, help='Threshold')
    d_parser.set_defaults(func=cmd_d)

    # Run command
    run_parser = subparsers.add_parser('run', help='Prove a case file')
    run_parser.add_argument('case', help='Case name (cases/<name>.txt) or path')
    _add_run_options(run_parser)
    run_parser.set_defaults(func=cmd_run)

    # Shell command
    shell_parser = subparsers.add_parser('shell', help='Interactive instruction loop')
    _add_run_options(shell_parser)
    shell_parser.set_defaults(func=cmd_shell, preset='default', coef_gran=None,
                              thresh_gran=None, iterations=None, processes=None)

    # Version command
    ver_parser = subparsers.add_parser('version', help='Print version')
    ver_parser.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except (ProverError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())

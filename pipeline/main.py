import argparse
import logging
import sys
import traceback

from pipeline import OutlierConfig, OutlierPipeline, apply_saved_model, export_result
from preprocessing.outliers import (
    CanceledExecutionError,
    ExecutionContext,
    InvalidSettingsError,
)


def print_summary(result) -> None:
    internals = result.internals
    print(f"    Rows in treated table: {result.treated.size}")
    print(f"    Summary rows: {result.summary.size}")
    if internals is not None:
        print(f"    Members: {internals.member_counter.total()}")
        print(f"    Outliers: {internals.outlier_counter.total()}")
        print(f"    Values of unknown groups: {internals.missing_groups_counter.total()}")
    for message in result.warnings:
        print(f"    ⚠️  {message}")


def run_detect(args) -> int:
    print("🚀 Starting Numeric Outliers...")

    print("\n[PHASE 1] Configuration")
    config = OutlierConfig.from_yaml(args.config)
    if args.output:
        config.output_dir = args.output
    print(f"    Input: {config.input_path}")
    print(f"    Outlier columns: {config.outlier_columns}")
    print(f"    Group columns: {config.group_columns}")

    pipeline = OutlierPipeline(config, ExecutionContext(show_progress=not args.quiet))

    print("\n[PHASE 2] Data Loading")
    table = pipeline.load_data()
    print(f"    Loaded {table.size} rows x {table.spec.num_columns} columns")

    print("\n[PHASE 3] Interval Estimation & Treatment")
    result = pipeline.detect(table)
    print_summary(result)

    print("\n[PHASE 4] Export")
    output_path = pipeline.export_results(result)
    print(f"    Results: {output_path}")
    model_path = pipeline.save_model(result)
    if model_path:
        print(f"    Model: {model_path}")

    print("\n✅ Pipeline Finished.")
    return 0


def run_apply(args) -> int:
    print("🚀 Applying Numeric Outliers Model...")

    print("\n[PHASE 1] Model & Data Loading")
    exec_context = ExecutionContext(show_progress=not args.quiet)
    result = apply_saved_model(args.model, args.input, exec_context)

    print("\n[PHASE 2] Treatment")
    print_summary(result)

    print("\n[PHASE 3] Export")
    output_path = export_result(result, args.output, args.format, include_timestamp=False)
    print(f"    Results: {output_path}")

    print("\n✅ Pipeline Finished.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='numeric-outliers',
        description='Detect and treat numeric outliers based on the interquartile range'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('-q', '--quiet', action='store_true', help='Hide progress bars')
    subparsers = parser.add_subparsers(dest='command', required=True)

    detect = subparsers.add_parser('detect', help='Learn intervals and treat a table')
    detect.add_argument('--config', default='config.yaml', help='YAML configuration file')
    detect.add_argument('--output', default=None, help='Override the output directory')
    detect.set_defaults(func=run_detect)

    apply = subparsers.add_parser('apply', help='Treat a table with a saved model')
    apply.add_argument('--model', required=True, help='Saved model file')
    apply.add_argument('--input', required=True, help='Input table (CSV or Excel)')
    apply.add_argument('--output', required=True, help='Output directory')
    apply.add_argument('--format', choices=['excel', 'csv'], default='csv', help='Export format')
    apply.set_defaults(func=run_apply)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s'
    )

    try:
        return args.func(args)
    except (InvalidSettingsError, FileNotFoundError) as e:
        print(f"❌ CONFIG ERROR: {e}")
        return 2
    except CanceledExecutionError:
        print("❌ Canceled.")
        return 130
    except ValueError as e:
        print(f"❌ FAILED: {e}")
        if args.verbose:
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""
Main entry point for the nighttime-light change pipeline
"""

import argparse
import sys
from pathlib import Path

from .config_loader import Config
from .pipeline import NightLightsPipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ntl-change',
        description='Compute nighttime-light change against a baseline window',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config.yaml
  ntl-change

  # Run with custom config and a different baseline start
  ntl-change --config my_config.yaml --baseline-start 2022-07
        """
    )

    parser.add_argument(
        '--config',
        type=str,
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--baseline-start',
        type=str,
        default=None,
        help='First month of the baseline window (overrides baseline.start)'
    )

    parser.add_argument(
        '--output-dir',
        type=str,
        default=None,
        help='Output directory (overrides project.output_dir)'
    )

    return parser


def main(argv=None):
    """Main function"""
    args = build_parser().parse_args(argv)

    if not Path(args.config).exists():
        print(f"ERROR: Configuration file not found: {args.config}")
        return 1

    try:
        config = Config(args.config)
        if args.baseline_start:
            config.config.setdefault('baseline', {})['start'] = args.baseline_start
        if args.output_dir:
            config.config.setdefault('project', {})['output_dir'] = args.output_dir

        print("Initializing Nighttime-Light Change Pipeline...")
        print(f"Using configuration: {args.config}\n")

        pipeline = NightLightsPipeline(config=config)
        results = pipeline.run()

        print("\n" + "=" * 80)
        print("SUCCESS!")
        print("=" * 80)
        print("\nFinal Results:")
        print(f"  Periods loaded: {len(results['quality']) - 1}")
        print(f"  Unit change records: {results['unit_change']['records']}")
        print(f"  Undefined percent changes: {results['unit_change']['undefined']}")
        print(f"  Pixel change months: {len(results['pixel_change'])}")
        print(f"  Aligned series: {results['series']['units']}")
        print(f"\nOutputs saved to: {pipeline.output_dir}")
        print()

        return 0

    except KeyboardInterrupt:
        print("\n\nPipeline interrupted by user")
        return 130

    except Exception as e:
        print(f"\n\nERROR: Pipeline failed: {str(e)}")
        print("\nCheck the log files for detailed error information.")
        return 1


if __name__ == "__main__":
    sys.exit(main())

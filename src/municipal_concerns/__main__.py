"""Command-line interface for the municipal concerns pipeline."""

import argparse
import sys
from pathlib import Path

from .config import RunConfig
from .pipeline import run_pipeline


def parse_args(argv=None):
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Crawl municipal websites for council documents and extract community concerns.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Crawl and chunk every city in the reference list (no LLM calls)
  python -m municipal_concerns --municipalities ontario_municipalities.json

  # Classify chunks with OpenAI (reads OPENAI_API_KEY)
  python -m municipal_concerns --municipalities ontario_municipalities.json --use-llm

  # Quick trial on three towns, settings from a YAML file
  python -m municipal_concerns --config run.yaml --types Town --limit 3
"""
    )

    parser.add_argument(
        '--municipalities',
        type=Path,
        help='Municipality reference file (CSV or JSON with name, type, website)'
    )

    parser.add_argument(
        '--config',
        type=Path,
        help='YAML configuration file; command-line options override it'
    )

    parser.add_argument(
        '--output-dir',
        type=Path,
        help='Output directory for results (default: ./output)'
    )

    parser.add_argument(
        '--types',
        nargs='*',
        help='Municipality types to process (default: City; pass no value for all types)'
    )

    parser.add_argument(
        '--limit',
        type=int,
        help='Process only the first N selected municipalities'
    )

    # Crawling behavior
    parser.add_argument(
        '--politeness-delay',
        type=float,
        help='Seconds to wait between requests (default: 1.0)'
    )

    parser.add_argument(
        '--max-depth',
        type=int,
        help='Maximum crawl depth from the home page (default: 3)'
    )

    parser.add_argument(
        '--discovery-timeout',
        type=float,
        help='Crawl time budget per municipality in seconds (default: 180)'
    )

    parser.add_argument(
        '--no-respect-robots',
        action='store_true',
        help='Do not respect robots.txt (use with caution)'
    )

    parser.add_argument(
        '--user-agent',
        help='Custom user agent string'
    )

    # Analysis
    parser.add_argument(
        '--use-llm',
        action='store_true',
        help='Classify chunks with the OpenAI API (requires OPENAI_API_KEY)'
    )

    parser.add_argument(
        '--models',
        nargs='+',
        help='OpenAI models to try in order (default: gpt-4o-mini gpt-4o)'
    )

    parser.add_argument(
        '--no-artifacts',
        action='store_true',
        help='Do not write per-municipality links/documents/chunks files'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )

    return parser.parse_args(argv)


def build_config(args) -> RunConfig:
    """Merge YAML settings (if any) with command-line overrides."""
    overrides = {
        'municipalities_file': args.municipalities,
        'output_dir': args.output_dir,
        'municipality_types': args.types,
        'limit': args.limit,
        'politeness_delay': args.politeness_delay,
        'max_depth': args.max_depth,
        'discovery_timeout': args.discovery_timeout,
        'user_agent': args.user_agent,
        'classifier_models': args.models,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}

    if args.no_respect_robots:
        overrides['respect_robots'] = False
    if args.use_llm:
        overrides['use_llm'] = True
    if args.no_artifacts:
        overrides['save_artifacts'] = False
    if args.no_progress:
        overrides['show_progress'] = False

    if args.config:
        config = RunConfig.from_yaml(args.config)
        data = {**config.__dict__, **overrides}
        return RunConfig(**data)

    return RunConfig(**overrides)


def main(argv=None):
    """Main CLI entrypoint."""
    args = parse_args(argv)

    try:
        config = build_config(args)

        if config.municipalities_file is None:
            print("❌ No municipality file given (use --municipalities or set it in --config)",
                  file=sys.stderr)
            sys.exit(2)

        result = run_pipeline(config)

        if result.get('error'):
            print(f"\n❌ Pipeline failed: {result['error']}", file=sys.stderr)
            sys.exit(1)

        summary = result['summary']
        print("\n✅ Pipeline completed successfully!")
        print(f"   - Municipalities processed: {summary['total_cities']}")
        print(f"   - Completed: {summary['completed']}")
        print(f"   - Skipped: {summary['skipped']}")
        print(f"   - Errors: {summary['errors']}")
        print(f"   - Community concerns identified: {summary['total_concerns']}")
        print(f"\nResults saved to: {config.output_dir}")
        sys.exit(0)

    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user", file=sys.stderr)
        sys.exit(130)
    except ValueError as e:
        print(f"\n❌ Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == '__main__':
    main()

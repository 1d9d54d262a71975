"""Command-line interface for PubMed Gateway."""

import argparse
import json
import sys
from pathlib import Path
from typing import List

from pubmed_gateway import GatewayConfig, PubMedGateway, __version__
from pubmed_gateway.formatting import FORMATS, KEY_INFO_SECTIONS
from pubmed_gateway.gateway import CACHE_TARGETS, REFERENCE_TYPES
from pubmed_gateway.logging_config import setup_logging


def _read_ids(args) -> List[str]:
    pmids = list(args.pmids or [])
    if getattr(args, 'input', None):
        input_path = Path(args.input)
        if not input_path.exists():
            print(f"Error: Input file not found: {args.input}", file=sys.stderr)
            sys.exit(1)
        with open(input_path, 'r') as f:
            pmids += [line.strip() for line in f if line.strip() and not line.startswith('#')]
    return pmids


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pubmed-gateway',
        description='PubMed Gateway - cached PubMed metadata and open-access full text',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Search, newest first, last 30 days
  pubmed-gateway search "crispr off-target" --max-results 5 --sort date --days-back 30

  # Details for several PMIDs
  pubmed-gateway details 31452104 32015508 --full-text

  # Open-access detection and downloads (needs FULLTEXT_MODE=enabled or auto)
  pubmed-gateway detect 31452104 32015508
  pubmed-gateway download 31452104
  pubmed-gateway batch-download --input pmids.txt

  # Inspect or clear caches
  pubmed-gateway cache-info
  pubmed-gateway clear-cache expired
        """
    )
    parser.add_argument('-c', '--config', type=str, help='Path to config file (default: config.yaml)')
    parser.add_argument('--cache-dir', type=str, help='Cache directory (overrides config)')
    parser.add_argument('--fulltext-mode', choices=('disabled', 'enabled', 'auto'),
                        help='Full-text mode (overrides FULLTEXT_MODE)')
    parser.add_argument('--log-file', type=str, help='Also log to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    parser.add_argument('--version', action='version', version=f'pubmed-gateway {__version__}')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('search', help='Search PubMed')
    p.add_argument('query')
    p.add_argument('-n', '--max-results', type=int, default=20)
    p.add_argument('--days-back', type=int, default=0)
    p.add_argument('--sort', choices=('relevance', 'date'), default='relevance')
    p.add_argument('--format', choices=FORMATS, default='llm_optimized')

    p = sub.add_parser('details', help='Metadata for up to 20 PMIDs')
    p.add_argument('pmids', nargs='*')
    p.add_argument('-i', '--input', type=str, help='File with one PMID per line')
    p.add_argument('--full-text', action='store_true', help='Include long abstract and open-access status')
    p.add_argument('--format', choices=FORMATS, default='llm_optimized')

    p = sub.add_parser('key-info', help='Selected parts of one article')
    p.add_argument('pmid')
    p.add_argument('--sections', nargs='+', choices=KEY_INFO_SECTIONS)
    p.add_argument('--max-chars', type=int)

    p = sub.add_parser('related', help='Similar, citing or referenced articles')
    p.add_argument('pmid')
    p.add_argument('--type', dest='reference_type', choices=REFERENCE_TYPES, default='similar')
    p.add_argument('-n', '--max-results', type=int, default=10)
    p.add_argument('--format', choices=FORMATS, default='concise')

    p = sub.add_parser('batch', help='Formatted metadata for up to 20 PMIDs')
    p.add_argument('pmids', nargs='*')
    p.add_argument('-i', '--input', type=str, help='File with one PMID per line')
    p.add_argument('--format', choices=FORMATS, default='concise')

    p = sub.add_parser('detect', help='Open-access status for up to 20 PMIDs')
    p.add_argument('pmids', nargs='*')
    p.add_argument('-i', '--input', type=str, help='File with one PMID per line')

    p = sub.add_parser('download', help='Download open-access full text for one PMID')
    p.add_argument('pmid')
    p.add_argument('--force', action='store_true', help='Re-download even if already saved')

    p = sub.add_parser('batch-download', help='Paced downloads for up to 10 PMIDs')
    p.add_argument('pmids', nargs='*')
    p.add_argument('-i', '--input', type=str, help='File with one PMID per line')
    p.add_argument('--no-pacing', action='store_true', help='Skip the random delays between downloads')
    p.add_argument('--force', action='store_true')
    p.add_argument('--timeout', type=float, help='Deadline for the whole batch in seconds')

    sub.add_parser('system-check', help='Platform and download tool report')
    sub.add_parser('cache-info', help='Cache statistics')
    p = sub.add_parser('clear-cache', help='Clear a cache tier')
    p.add_argument('target', choices=CACHE_TARGETS, nargs='?', default='memory')
    sub.add_parser('export-status', help='Citation export statistics')

    return parser


def run(args, gateway: PubMedGateway) -> dict:
    command = args.command
    if command == 'search':
        return gateway.search(args.query, args.max_results, args.days_back, args.sort, args.format)
    if command == 'details':
        return gateway.get_details(_read_ids(args), args.full_text, args.format)
    if command == 'key-info':
        return gateway.extract_key_info(args.pmid, args.sections, args.max_chars)
    if command == 'related':
        return gateway.cross_reference(args.pmid, args.reference_type, args.max_results, args.format)
    if command == 'batch':
        return gateway.batch_query(_read_ids(args), args.format)
    if command == 'detect':
        return gateway.detect_fulltext(_read_ids(args))
    if command == 'download':
        return gateway.download_fulltext(args.pmid, args.force)
    if command == 'batch-download':
        return gateway.batch_download(_read_ids(args), not args.no_pacing, args.force, args.timeout)
    if command == 'system-check':
        return gateway.system_check()
    if command == 'cache-info':
        return gateway.cache_info()
    if command == 'clear-cache':
        return gateway.clear_cache(args.target)
    if command == 'export-status':
        return gateway.export_status()
    raise ValueError(f"Unknown command: {command}")


def main(argv: List[str] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, Path(args.log_file) if args.log_file else None)

    config = GatewayConfig.load(args.config)
    if args.cache_dir:
        config.cache_dir = Path(args.cache_dir).expanduser()
    if args.fulltext_mode:
        config.fulltext_mode = args.fulltext_mode

    with PubMedGateway(config, show_progress=True) as gateway:
        result = run(args, gateway)

    json.dump(result, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0 if result.get('success') else 1


if __name__ == '__main__':
    sys.exit(main())

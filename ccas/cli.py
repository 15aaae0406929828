#!/usr/bin/env python
"""
Command-line interface for the Construction Cost Allocation System.

This module provides the main entry point for the CCAS CLI, with commands
for database setup, allocation coverage, project financials and reporting.
"""

import sys
import logging
import argparse
from typing import Dict, List, Any, Optional

from ccas.config import get_config, configure_logging
from ccas.db.session import session_scope
from ccas.financial_analysis.engine import FinancialAnalysisEngine
from ccas.reporting.executor import ReportExecutor
from ccas.reporting.registry import get_data_source, list_data_sources
from ccas.reporting.summary import SummaryRenderer
from ccas.utils.common import safe_json_dumps, format_currency
from ccas.utils.errors import CCASError, ValidationError

logger = logging.getLogger(__name__)

EXIT_USAGE = 2


def setup_db_commands(subparsers):
    """Set up database commands.

    Args:
        subparsers: argparse subparsers object
    """
    db_parser = subparsers.add_parser('db', help='Database commands')
    db_subparsers = db_parser.add_subparsers(dest='db_command', help='Database command')

    init_parser = db_subparsers.add_parser('init', help='Create the database tables')
    init_parser.add_argument('--force',
                             action='store_true',
                             help='Drop and recreate an existing database')


def setup_allocation_commands(subparsers):
    """Set up allocation commands.

    Args:
        subparsers: argparse subparsers object
    """
    allocation_parser = subparsers.add_parser('allocation', help='Allocation coverage commands')
    allocation_subparsers = allocation_parser.add_subparsers(dest='allocation_command',
                                                             help='Allocation command')

    summary_parser = allocation_subparsers.add_parser('summary', help='Show allocation coverage of a project')
    summary_parser.add_argument('project_id', help='Project ID')
    _add_output_arguments(summary_parser)

    suggest_parser = allocation_subparsers.add_parser('suggest', help='Suggest a line item for an expense')
    suggest_parser.add_argument('expense_id', help='Expense ID')
    suggest_parser.add_argument('--threshold',
                                type=int,
                                help='Minimum confidence for a suggestion (overrides config)')
    suggest_parser.add_argument('--limit',
                                type=int,
                                default=5,
                                help='Number of ranked candidates to show')
    suggest_parser.add_argument('--json', action='store_true', help='Print JSON')

    receipts_parser = allocation_subparsers.add_parser('receipts', help='Suggest receipts for an expense')
    receipts_parser.add_argument('expense_id', help='Expense ID')
    receipts_parser.add_argument('--limit', type=int, default=5, help='Number of receipts to show')
    receipts_parser.add_argument('--json', action='store_true', help='Print JSON')

    unallocated_parser = allocation_subparsers.add_parser('unallocated',
                                                          help='List expenses not allocated to any line item')
    unallocated_parser.add_argument('project_id', help='Project ID')
    unallocated_parser.add_argument('--json', action='store_true', help='Print JSON')


def setup_rollup_commands(subparsers):
    """Set up project financial commands.

    Args:
        subparsers: argparse subparsers object
    """
    rollup_parser = subparsers.add_parser('rollup', help='Project financial commands')
    rollup_subparsers = rollup_parser.add_subparsers(dest='rollup_command', help='Rollup command')

    recompute_parser = rollup_subparsers.add_parser('recompute', help='Recompute and store project financials')
    recompute_parser.add_argument('project_id', help='Project ID')
    _add_output_arguments(recompute_parser)

    show_parser = rollup_subparsers.add_parser('show', help='Show project financials without storing them')
    show_parser.add_argument('project_id', help='Project ID')
    _add_output_arguments(show_parser)


def setup_report_commands(subparsers):
    """Set up reporting commands.

    Args:
        subparsers: argparse subparsers object
    """
    report_parser = subparsers.add_parser('report', help='Reporting commands')
    report_subparsers = report_parser.add_subparsers(dest='report_command', help='Report command')

    run_parser = report_subparsers.add_parser('run', help='Run a report against a data source')
    run_parser.add_argument('source', help='Data source name')
    run_parser.add_argument('--filter',
                            dest='filters',
                            action='append',
                            default=[],
                            metavar='FIELD:OPERATOR[:VALUE]',
                            help='Filter (repeatable), e.g. category:equals:materials')
    run_parser.add_argument('--sort-by', help='Field to sort by')
    run_parser.add_argument('--sort-dir',
                            choices=['asc', 'desc'],
                            default='desc',
                            help='Sort direction')
    run_parser.add_argument('--limit', type=int, help='Maximum number of rows')
    _add_output_arguments(run_parser)

    report_subparsers.add_parser('sources', help='List available data sources')


def _add_output_arguments(parser):
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--json', action='store_true', help='Print JSON')
    group.add_argument('--html', action='store_true', help='Print HTML instead of Markdown')


def parse_filter(text: str) -> Dict[str, Any]:
    """Parse a FIELD:OPERATOR[:VALUE] command-line filter.

    Args:
        text: Filter text

    Returns:
        Filter dictionary
    """
    parts = text.split(':', 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValidationError(f"Filter must look like FIELD:OPERATOR[:VALUE], got '{text}'")
    return {
        'field': parts[0],
        'operator': parts[1],
        'value': parts[2] if len(parts) == 3 else None,
    }


def _renderer() -> SummaryRenderer:
    return SummaryRenderer(get_config().get('reporting', {}))


def _emit(args, data: Dict[str, Any], render) -> None:
    if args.json:
        print(safe_json_dumps(data, indent=2))
    else:
        print(render(data, format='html' if args.html else 'md'))


def init_db_command(args) -> int:
    """Create the database tables.

    Args:
        args: Command-line arguments
    """
    from ccas.db.init import initialize

    if initialize(force=args.force):
        print("Database initialized")
        return 0
    print("Database already exists; use --force to reinitialize", file=sys.stderr)
    return 1


def allocation_summary(args) -> int:
    """Show allocation coverage of a project.

    Args:
        args: Command-line arguments
    """
    with session_scope() as session:
        engine = FinancialAnalysisEngine(session)
        summary = engine.compute_allocation_summary(args.project_id).to_dict()
    _emit(args, summary, _renderer().render_allocation_summary)
    return 0


def allocation_suggest(args) -> int:
    """Suggest the line item an expense most likely pays for.

    Args:
        args: Command-line arguments
    """
    with session_scope() as session:
        engine = FinancialAnalysisEngine(session)
        if args.threshold is not None:
            engine.suggestion_threshold = args.threshold
        suggestion = engine.suggest_allocation(args.expense_id, limit=args.limit)

    if args.json:
        print(safe_json_dumps(suggestion, indent=2))
        return 0

    if suggestion['suggested']:
        print(f"Suggested line item: {suggestion['line_item_id']} "
              f"(confidence {suggestion['confidence']})")
    else:
        print(f"No suggestion above threshold {suggestion['threshold']} "
              f"(best confidence {suggestion['confidence']})")

    for match in suggestion['candidates']:
        print(f"  {match['score']:>4}  {match['candidate_id']}  "
              f"{format_currency(match['amount'])}  {match.get('description') or ''}")
        print(f"        {', '.join(match['reasons'])}")
    return 0


def allocation_receipts(args) -> int:
    """Rank unlinked receipts for an expense.

    Args:
        args: Command-line arguments
    """
    with session_scope() as session:
        matches = FinancialAnalysisEngine(session).suggest_receipts(args.expense_id, limit=args.limit)

    if args.json:
        print(safe_json_dumps(matches, indent=2))
        return 0
    if not matches:
        print("No matching receipts")
    for match in matches:
        print(f"  {match['score']:>4}  {match['candidate_id']}  {format_currency(match['amount'])}  "
              f"{', '.join(match['reasons'])}")
    return 0


def allocation_unallocated(args) -> int:
    """List expenses not allocated to any line item.

    Args:
        args: Command-line arguments
    """
    with session_scope() as session:
        expenses = FinancialAnalysisEngine(session).list_unallocated_expenses(args.project_id)

    if args.json:
        print(safe_json_dumps(expenses, indent=2))
        return 0

    print(f"{len(expenses)} unallocated expenses")
    for expense in expenses:
        print(f"  {expense['expense_date']}  {format_currency(expense['amount']):>14}  "
              f"{expense['category']:<16} {expense.get('payee_name') or ''}  {expense['source_key']}")
    return 0


def rollup_command(args, store: bool) -> int:
    """Show or recompute project financials.

    Args:
        args: Command-line arguments
        store: Whether to write the rollup back to the project
    """
    from ccas.db.operations import get_project

    with session_scope() as session:
        engine = FinancialAnalysisEngine(session)
        if store:
            result = engine.recompute_project_margins(args.project_id)
        else:
            result = engine.compute_rollup(args.project_id)
        project = get_project(session, args.project_id)
        project_info = {
            'project_name': project.project_name,
            'project_number': project.project_number,
        }
        rollup = result.to_dict()

    if args.json:
        print(safe_json_dumps(rollup, indent=2))
    else:
        print(_renderer().render_rollup(rollup, project_info, format='html' if args.html else 'md'))
    return 0


def run_report(args) -> int:
    """Run a report against a data source.

    Args:
        args: Command-line arguments
    """
    filters = [parse_filter(text) for text in args.filters]

    with session_scope() as session:
        executor = ReportExecutor(session, get_config().get('reporting', {}))
        result = executor.execute_report(
            args.source,
            filters,
            sort_by=args.sort_by,
            sort_dir=args.sort_dir,
            limit=args.limit,
        )

    _emit(args, result.model_dump(), _renderer().render_report)
    return 0


def list_sources(args) -> int:
    """List the registered report data sources."""
    for name in list_data_sources():
        source = get_data_source(name)
        print(f"{source.name:<22} {source.description}")
        print(f"{'':<22} fields: {', '.join(source.field_names)}")
    return 0


def parse_args(args=None):
    """Parse command-line arguments.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Tuple of (parser, parsed arguments)
    """
    parser = argparse.ArgumentParser(description='Construction Cost Allocation System')

    subparsers = parser.add_subparsers(dest='command', help='Command')

    setup_db_commands(subparsers)
    setup_allocation_commands(subparsers)
    setup_rollup_commands(subparsers)
    setup_report_commands(subparsers)

    return parser, parser.parse_args(args)


COMMANDS = {
    ('db', 'init'): init_db_command,
    ('allocation', 'summary'): allocation_summary,
    ('allocation', 'suggest'): allocation_suggest,
    ('allocation', 'receipts'): allocation_receipts,
    ('allocation', 'unallocated'): allocation_unallocated,
    ('rollup', 'recompute'): lambda args: rollup_command(args, store=True),
    ('rollup', 'show'): lambda args: rollup_command(args, store=False),
    ('report', 'run'): run_report,
    ('report', 'sources'): list_sources,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CCAS CLI.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Process exit status
    """
    parser, args = parse_args(argv)
    configure_logging()

    subcommand = getattr(args, f"{args.command}_command", None) if args.command else None
    handler = COMMANDS.get((args.command, subcommand))
    if handler is None:
        parser.print_help()
        return EXIT_USAGE

    try:
        return handler(args)
    except CCASError as e:
        logger.debug(f"Command failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == '__main__':
    sys.exit(main())

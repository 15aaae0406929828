"""
Summary rendering for the Construction Cost Allocation System.

This module renders allocation summaries, project rollups and report results
as Markdown (or HTML) from the Jinja2 templates shipped with the package.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Any, Optional

import jinja2
import markdown

from ccas.utils.common import format_currency

logger = logging.getLogger(__name__)

FORMATS = ('md', 'html')


def _format_date(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime('%Y-%m-%d')
    return str(value) if value else ''


def _format_percent(value: Any) -> str:
    if value is None:
        return 'N/A'
    return f"{float(value):.1f}%"


def _format_cell(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'yes' if value else 'no'
    if isinstance(value, float):
        return f"{value:,.2f}"
    if isinstance(value, (date, datetime)):
        return _format_date(value)
    return str(value).replace('|', '\\|').replace('\n', ' ')


class SummaryRenderer:
    """Renders summaries from Jinja2 templates."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize the summary renderer.

        Args:
            config: Optional configuration dictionary (the ``reporting`` section)
        """
        self.config = config or {}
        self.template_dir = self._get_template_dir()
        self.jinja_env = self._setup_jinja_env()

    def _get_template_dir(self) -> Path:
        """Get the template directory path.

        Returns:
            Path to the template directory
        """
        if self.config.get('templates_dir'):
            return Path(self.config['templates_dir'])

        # Default to the templates directory in the package
        return Path(__file__).parent / 'templates'

    def _setup_jinja_env(self) -> jinja2.Environment:
        """Set up the Jinja2 template environment.

        Returns:
            Jinja2 Environment
        """
        loader = jinja2.FileSystemLoader(str(self.template_dir))

        env = jinja2.Environment(
            loader=loader,
            autoescape=jinja2.select_autoescape(['html']),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=jinja2.StrictUndefined
        )

        env.filters['currency'] = format_currency
        env.filters['date'] = _format_date
        env.filters['percent'] = _format_percent
        env.filters['cell'] = _format_cell

        return env

    def render(self, template_name: str, context: Dict[str, Any], format: str = 'md') -> str:
        """Render a template to Markdown or HTML.

        Args:
            template_name: Template file name
            context: Template variables
            format: 'md' or 'html'

        Returns:
            Rendered text
        """
        if format not in FORMATS:
            raise ValueError(f"Unsupported summary format: {format}")

        template = self.jinja_env.get_template(template_name)
        content = template.render(generated=datetime.now(), **context)

        if format == 'html':
            return markdown.markdown(content, extensions=['tables'])
        return content

    def render_allocation_summary(self, summary: Dict[str, Any], format: str = 'md') -> str:
        """Render an allocation summary dictionary (AllocationSummary.to_dict())."""
        return self.render('allocation_summary.md.j2', {'summary': summary}, format)

    def render_rollup(self, rollup: Dict[str, Any], project: Optional[Dict[str, Any]] = None,
                      format: str = 'md') -> str:
        """Render a rollup dictionary (RollupResult.to_dict())."""
        project_info = {'project_name': None, 'project_number': None}
        project_info.update(project or {})
        return self.render('rollup.md.j2', {'rollup': rollup, 'project': project_info}, format)

    def render_report(self, result: Dict[str, Any], format: str = 'md') -> str:
        """Render a report result dictionary as a table."""
        columns = list(result['rows'][0].keys()) if result.get('rows') else []
        return self.render('report.md.j2', {'result': result, 'columns': columns}, format)

"""Plain-text summaries of ranked analysis results, rendered with Jinja2."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from jinja2 import Template

from .fields import find_field
from .models import FieldMeta, Filter, MainField, SubgroupResult

logger = logging.getLogger(__name__)

CONTRIBUTION_TEMPLATE = (
    "{{ labels | join(', ') }} contribute{% if labels | length == 1 %}s{% endif %} "
    "{{ contributions | join(', ') }} to the gap between {{ group }} and the global "
    "{{ aggregator }} of {{ metric }}"
)

COMPARISON_TEMPLATE = (
    "{{ labels | join(', ') }} account{% if labels | length == 1 %}s{% endif %} for "
    "{{ contributions | join(', ') }} of the {{ aggregator }} {{ metric }} difference between "
    "{{ group }} and {{ reference }}"
)


def _format_bound(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:,.4g}"
    return str(value)


def describe_filter(flt: Filter, fields: Optional[Sequence[FieldMeta]] = None) -> str:
    """Short label for a filter or bucket, e.g. 'age in [20, 30]' or 'city = Paris'."""
    meta = find_field(fields, flt.fid) if fields else None
    name = meta.name if meta is not None else flt.fid
    if flt.kind == 'range':
        lo, hi = flt.range
        if lo == hi:
            return f"{name} = {_format_bound(lo)}"
        return f"{name} in [{_format_bound(lo)}, {_format_bound(hi)}]"
    if len(flt.values) == 1:
        return f"{name} = {_format_bound(flt.values[0])}"
    return f"{name} in {{{', '.join(_format_bound(v) for v in flt.values)}}}"


def format_contribution(x: float) -> str:
    return f"{x*100:+.1f}%"


def summary_params(
    results: Sequence[SubgroupResult],
    main_field: MainField,
    fields: Sequence[FieldMeta],
    top_k: int = 3
) -> Dict[str, Any]:
    meta = find_field(fields, main_field.fid)
    top = list(results)[:top_k]
    return {
        'labels': [describe_filter(r.bucket, fields) for r in top],
        'contributions': [format_contribution(r.contribution) for r in top],
        'aggregator': main_field.aggregator.value,
        'metric': meta.name if meta is not None else main_field.fid,
    }


def render_summary(
    results: Sequence[SubgroupResult],
    main_field: MainField,
    fields: Sequence[FieldMeta],
    template: Optional[str] = None,
    group: str = "the selection",
    reference: str = "the comparison group",
    top_k: int = 3
) -> str:
    """
    Render a one-sentence summary of the top results.

    Args:
        results: Ranked results from either analyzer
        main_field: Measure being explained
        fields: Field metadata for display names
        template: Jinja2 template; defaults to CONTRIBUTION_TEMPLATE
        group: Wording for the analyzed group
        reference: Wording for the comparison group (comparison summaries)
        top_k: Number of results to mention

    Returns:
        Rendered text string
    """
    if not results:
        return f"No significant contributors identified for the {main_field.aggregator.value} of {main_field.fid}"

    context = summary_params(results, main_field, fields, top_k=top_k)
    context.update(group=group, reference=reference)
    try:
        return Template(template or CONTRIBUTION_TEMPLATE).render(**context)
    except Exception as e:
        logger.warning(f"Summary template failed to render: {e}")
        return f"Error filling template: {str(e)}"


def summarize_analyses(
    general: List[SubgroupResult],
    comparison: List[SubgroupResult],
    main_field: MainField,
    fields: Sequence[FieldMeta],
    contribution_template: Optional[str] = None,
    comparison_template: Optional[str] = None
) -> Dict[str, str]:
    return {
        'general': render_summary(general, main_field, fields, template=contribution_template),
        'comparison': render_summary(
            comparison, main_field, fields,
            template=comparison_template or COMPARISON_TEMPLATE,
        ),
    }

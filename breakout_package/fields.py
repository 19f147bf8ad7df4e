"""Field lookups and the eligibility rules that decide what can be measured or split."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import Aggregator, CompareTarget, FieldMeta, Filter, MainField, SemanticType

logger = logging.getLogger(__name__)


def find_field(fields: Iterable[FieldMeta], fid: str) -> Optional[FieldMeta]:
    for meta in fields:
        if meta.fid == fid:
            return meta
    return None


def resolve_compare_target(main_field: MainField, fields: Sequence[FieldMeta]) -> Optional[CompareTarget]:
    """
    Map a main field definition to the concrete field it aggregates.

    ``mean`` and ``sum`` need a quantitative field; ``count`` works on any
    field. Returns None when the field is unknown or unsuitable.
    """
    meta = find_field(fields, main_field.fid)
    if meta is None:
        logger.debug(f"Main field '{main_field.fid}' not found in field metas")
        return None
    if main_field.aggregator in (Aggregator.MEAN, Aggregator.SUM) and meta.semantic_type != SemanticType.QUANTITATIVE:
        logger.debug(
            f"Cannot apply {main_field.aggregator.value} to {meta.semantic_type.value} field '{meta.fid}'"
        )
        return None
    return CompareTarget(field=meta)


def candidate_fields(
    fields: Iterable[FieldMeta],
    main_field: MainField,
    include_main: bool = False
) -> List[FieldMeta]:
    """Fields to try splitting the population on."""
    return [meta for meta in fields if include_main or meta.fid != main_field.fid]


def unresolved_filters(filters: Iterable[Filter], fields: Sequence[FieldMeta]) -> List[Filter]:
    """Filters that reference a field absent from ``fields``."""
    return [flt for flt in filters if find_field(fields, flt.fid) is None]


def export_filters(filters: Iterable[Filter], fields: Sequence[FieldMeta]) -> List[Dict[str, Any]]:
    """Serialize filters with display name and semantic type. Unknown fields are dropped."""
    result = []
    for flt in filters:
        meta = find_field(fields, flt.fid)
        if meta is None:
            continue
        result.append({
            **flt.to_dict(),
            'name': meta.name,
            'semantic_type': meta.semantic_type.value,
        })
    return result

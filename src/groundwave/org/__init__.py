"""Org-mode parsing: rendering, directive extraction and link annotation."""

from groundwave.org.directives import (
    UNTITLED,
    build_preview,
    extract_date_directive,
    extract_id,
    extract_links,
    extract_title,
    is_home_access,
    is_public_access,
    validate_uuid,
)
from groundwave.org.links import annotate_external_links, is_external_link, merge_rel_values
from groundwave.org.render import OrgRenderer, normalize_base_path, parse_to_html

__all__ = [
    "UNTITLED",
    "OrgRenderer",
    "annotate_external_links",
    "build_preview",
    "extract_date_directive",
    "extract_id",
    "extract_links",
    "extract_title",
    "is_external_link",
    "is_home_access",
    "is_public_access",
    "merge_rel_values",
    "normalize_base_path",
    "parse_to_html",
    "validate_uuid",
]

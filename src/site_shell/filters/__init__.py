"""Block-list compilation, content blocking and list refresh."""

from site_shell.filters.active import ActiveRuleSet
from site_shell.filters.adapter import ActivationResult, ContentBlockAdapter
from site_shell.filters.compiler import compile_filter_list
from site_shell.filters.models import (
    CompiledFilterRuleSet,
    FilterMatch,
    FilterRule,
    MatchKind,
    ResourceType,
    RuleAction,
)
from site_shell.filters.source import FilterListService, RefreshResult

__all__ = [
    "ActiveRuleSet",
    "ActivationResult",
    "CompiledFilterRuleSet",
    "ContentBlockAdapter",
    "FilterListService",
    "FilterMatch",
    "FilterRule",
    "MatchKind",
    "RefreshResult",
    "ResourceType",
    "RuleAction",
    "compile_filter_list",
]

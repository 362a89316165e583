"""Predicate engine: filter policies and their evaluation against events."""

from fanout.filtering.engine import matches
from fanout.filtering.policy import FilterPolicy, compile_policy

__all__ = ["FilterPolicy", "compile_policy", "matches"]

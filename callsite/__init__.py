"""Callsite: a live, multi-keyed index over scip-callgraph call graphs."""

__version__ = "0.1.0"

"""
accessmatrix -- Hierarchical Permission Resolution for Role-Based Access
=========================================================================

A small, dependency-light engine that decides whether a role grants a
dotted permission string (``group.subject.action``), and rewrites a role's
stored permission set when an administrator toggles access for a whole
group, a subject, or a single action.

Grants are stored compactly using wildcards (``*`` and ``<prefix>.*``).
Every mutation returns a new role value and preserves the effective access
of every permission it was not asked to change.
"""

__version__ = "0.1.0"

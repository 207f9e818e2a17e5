"""Psychosocial risk automation service.

Turns completed NR-01 psychosocial assessment responses into per-category
risk analyses, remediation action plans, and notifications. Work runs in a
durable, priority-ordered background queue consumed by a bounded worker pool.
"""

__version__ = "0.1.0"

"""Allowlists of attributes encrypted at rest, per entity.

This is the only place that decides what is sensitive; every encrypt and
decrypt call takes its field list from here.
"""

TASK_FIELDS: tuple[str, ...] = ("name", "why", "penalty")
PROOF_FIELDS: tuple[str, ...] = ("remark",)
JOURNAL_FIELDS: tuple[str, ...] = ("subject", "content")
TODO_FIELDS: tuple[str, ...] = ("text",)
EXPENSE_FIELDS: tuple[str, ...] = ("description",)
CHALLENGE_FIELDS: tuple[str, ...] = ("title", "description")
SESSION_FIELDS: tuple[str, ...] = ()
PROFILE_FIELDS: tuple[str, ...] = ("bio", "secret_key")

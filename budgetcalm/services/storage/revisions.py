"""
Revision markers.

A revision looks like "<generation>-<32 hex chars>". Each write bumps the
generation. When two replicas disagree, the higher generation wins and
ties go to the greater hex suffix, so every replica picks the same
winner without coordination.
"""

from typing import Optional
from uuid import uuid4


def new_revision(previous: Optional[str] = None) -> str:
    """Revision following `previous` (or the first revision)."""
    generation = parse_revision(previous)[0] if previous else 0
    return f"{generation + 1}-{uuid4().hex}"


def parse_revision(revision: str) -> tuple[int, str]:
    if not isinstance(revision, str):
        raise ValueError(f"Malformed revision: {revision!r}")
    generation, _, suffix = revision.partition("-")
    try:
        return int(generation), suffix
    except ValueError:
        raise ValueError(f"Malformed revision: {revision!r}")


def revision_wins(candidate: str, current: Optional[str]) -> bool:
    """True if `candidate` should replace `current` under last-writer-wins."""
    if current is None:
        return True
    return parse_revision(candidate) > parse_revision(current)

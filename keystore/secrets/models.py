"""Credential data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credential:
    """A stored provider secret.

    ``secret`` is excluded from ``repr`` so a credential can be logged or
    shown in a traceback without disclosing its value.
    """

    provider: str
    secret: str = field(repr=False)
    updated_at: datetime = field(default_factory=utc_now)


# provider name → Credential
CredentialMapping = Dict[str, Credential]

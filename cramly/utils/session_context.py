"""Explicit per-request identity handed to collaborators that need an owner."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class SessionContext:
    user_id: Optional[str] = None
    request_id: str = field(default_factory=lambda: os.urandom(8).hex())

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

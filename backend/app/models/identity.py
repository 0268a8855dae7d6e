"""
Identity Models - Directory entries and resolved public identities.
"""

from dataclasses import dataclass
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class DirectoryEntry(BaseModel):
    """One person in the external directory, keyed by lowercase internal name."""
    model_config = ConfigDict(frozen=True)

    original_name: str
    override: Optional[str] = None
    is_guest: bool = False
    is_host: bool = False
    status: List[str] = []

    @property
    def display_name(self) -> str:
        return self.override or self.original_name


@dataclass(frozen=True)
class ResolvedIdentity:
    """Public identity safe to send to clients."""
    display_name: str
    is_guest: bool = False
    is_host: bool = False

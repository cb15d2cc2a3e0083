"""Proposal catalog protocol.

The job/proposal catalog lives outside this service. All the workflow needs
from it is the accepted proposal that seeds a new engagement.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class EngagementSeed:
    """An accepted proposal, as supplied by the catalog."""

    proposal_id: str
    job_id: str
    worker_id: str
    client_id: str


@runtime_checkable
class ProposalCatalog(Protocol):
    async def get_accepted(self, proposal_id: str) -> EngagementSeed | None:
        """Return the seed for an accepted proposal, or None if there is none."""
        ...

"""Authorization policy consulted by every workflow operation.

A pure decision over a closed set of (role, relation) tags. The relation is
derived from ids only; a principal whose claimed role disagrees with the side
they are on is treated as unrelated.

Rules:
    client-only   create, fund, fund_all, release, replace_plan, reschedule,
                  request_revision
    worker-only   start_work, submit_work, resume_work
    either party  view, rate
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from freelance_escrow.domain.enums import Operation, Relation, Role
from freelance_escrow.domain.exceptions import NotAuthorizedError
from freelance_escrow.domain.values import Principal

_CLIENT_ONLY = frozenset({Relation.CLIENT})
_WORKER_ONLY = frozenset({Relation.WORKER})
_EITHER_PARTY = frozenset({Relation.CLIENT, Relation.WORKER})

RULES: dict[Operation, frozenset[Relation]] = {
    Operation.CREATE: _CLIENT_ONLY,
    Operation.VIEW: _EITHER_PARTY,
    Operation.START_WORK: _WORKER_ONLY,
    Operation.SUBMIT_WORK: _WORKER_ONLY,
    Operation.REQUEST_REVISION: _CLIENT_ONLY,
    Operation.RESUME_WORK: _WORKER_ONLY,
    Operation.FUND: _CLIENT_ONLY,
    Operation.FUND_ALL: _CLIENT_ONLY,
    Operation.RELEASE: _CLIENT_ONLY,
    Operation.REPLACE_PLAN: _CLIENT_ONLY,
    Operation.RESCHEDULE: _CLIENT_ONLY,
    Operation.RATE: _EITHER_PARTY,
}


class Parties(Protocol):
    """Anything that names the two sides of an engagement."""

    @property
    def client_id(self) -> str: ...

    @property
    def worker_id(self) -> str: ...


@dataclass(frozen=True)
class Decision:
    allowed: bool
    relation: Relation
    reason: str = ""


class AuthorizationPolicy:
    """Decides whether a principal may perform an operation on an engagement."""

    def __init__(self, rules: dict[Operation, frozenset[Relation]] | None = None) -> None:
        self._rules = rules or RULES
        missing = set(Operation) - set(self._rules)
        if missing:
            raise ValueError(f"No authorization rule for: {sorted(missing)}")

    @staticmethod
    def relation_of(actor: Principal, parties: Parties) -> Relation:
        if actor.role is Role.CLIENT and actor.id == parties.client_id:
            return Relation.CLIENT
        if actor.role is Role.WORKER and actor.id == parties.worker_id:
            return Relation.WORKER
        return Relation.NONE

    def decide(self, actor: Principal, parties: Parties, operation: Operation) -> Decision:
        relation = self.relation_of(actor, parties)
        allowed_relations = self._rules[operation]
        if relation in allowed_relations:
            return Decision(allowed=True, relation=relation)
        if relation is Relation.NONE:
            reason = "actor is not a party to this engagement"
        else:
            needed = " or ".join(sorted(r.value for r in allowed_relations))
            reason = f"only the {needed} may {operation.value}"
        return Decision(allowed=False, relation=relation, reason=reason)

    def enforce(self, actor: Principal, parties: Parties, operation: Operation) -> Relation:
        """Return the actor's relation, or raise if the decision is a deny.

        Raises:
            NotAuthorizedError: If the policy denies the operation.
        """
        decision = self.decide(actor, parties, operation)
        if not decision.allowed:
            raise NotAuthorizedError(operation.value, decision.reason)
        return decision.relation

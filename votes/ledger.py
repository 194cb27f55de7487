"""
votes/ledger.py -- Per-user, per-resource vote state and live tallies.

State machine (one record per (resource, user) pair):

    NO_VOTE  --v=+1-->  UPVOTED
    NO_VOTE  --v=-1-->  DOWNVOTED
    any      --v=0--->  NO_VOTE     (record deleted; idempotent)
    any      --v=+/-1-> that state  (record upserted; idempotent)

A vote record is the document "<resourceId>:<userId>" in the `votes`
collection with fields resourceId, userId and value. The composite id plus a
unique index on (resourceId, userId) keep at most one record per pair even
under concurrent votes.

The tally is never cached on the resource: get_tally() sums the records with
an aggregate() call every time, so it always equals the sum of the stored
values.

Layer rule: votes/ imports from core/ and docstore/ only.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from core.errors import InvalidInput, NotFound, store_boundary
from docstore.models import IndexSpec, Patch
from docstore.store import DocumentStore

logger = logging.getLogger("threadboard.votes")

VOTES = "votes"

VOTE_INDEXES = [
    IndexSpec("resource_user", ("resourceId", "userId"), "unique"),
    IndexSpec("resource", ("resourceId",), "equality"),
]


class VoteState(enum.Enum):
    NO_VOTE = 0
    UPVOTED = 1
    DOWNVOTED = -1

    @classmethod
    def from_value(cls, value) -> "VoteState":
        return cls(value) if value in (-1, 0, 1) else cls.NO_VOTE


@dataclass(frozen=True)
class VoteOutcome:
    state: VoteState
    tally: int

    def to_dict(self) -> dict:
        return {"state": self.state.name, "value": self.state.value, "tally": self.tally}


def vote_id(resource_id: str, user_id: str) -> str:
    return f"{resource_id}:{user_id}"


def _check_value(value) -> int:
    # bool is an int subclass; True must not count as an upvote.
    if isinstance(value, bool) or not isinstance(value, int) or value not in (-1, 0, 1):
        raise InvalidInput("Vote value must be -1, 0 or 1.")
    return value


class VoteLedger:
    """Apply votes and compute tallies for one resource collection.

    Usage:
        ledger = VoteLedger(store)                 # votes on "posts"
        outcome = ledger.apply_vote(uid, post_id, 1)
        outcome.state, outcome.tally               # (VoteState.UPVOTED, 1)
    """

    def __init__(self, store: DocumentStore, resources: str = "posts", users: str = "users") -> None:
        self.store = store
        self.resources = resources
        self.users = users
        store.register_indexes(VOTES, VOTE_INDEXES)

    def apply_vote(self, user_id: str, resource_id: str, value: int) -> VoteOutcome:
        """Move (resource, user) to the state given by value and return the new tally.

        Raises InvalidInput for a bad value and NotFound when the user or the
        resource does not exist; neither case touches the store.
        """
        _check_value(value)
        with store_boundary("apply_vote"):
            if not self.store.has(self.users, user_id):
                raise NotFound("User not found.")
            if not self.store.has(self.resources, resource_id):
                raise NotFound("Resource not found.")
            key = vote_id(resource_id, user_id)
            if value == 0:
                self.store.delete(VOTES, key)
            else:
                patch = Patch({"resourceId": resource_id, "userId": user_id, "value": value})
                self.store.update(VOTES, key, patch, upsert=True)
        tally = self.get_tally(resource_id)
        logger.debug("Vote %+d by %s on %s -> tally %d", value, user_id, resource_id, tally)
        return VoteOutcome(state=VoteState(value), tally=tally)

    def get_vote(self, user_id: str, resource_id: str) -> VoteState:
        with store_boundary("get_vote"):
            record = self.store.get(VOTES, vote_id(resource_id, user_id))
        return VoteState.from_value(record.get("value")) if record else VoteState.NO_VOTE

    def get_tally(self, resource_id: str) -> int:
        """Sum of every stored vote on the resource (0 when there are none)."""
        pipeline = [
            {"$match": {"resourceId": resource_id}},
            {"$group": {"_id": None, "total": {"$sum": "$value"}}},
        ]
        with store_boundary("get_tally"):
            rows = self.store.aggregate(VOTES, pipeline)
        return int(rows[0]["total"] or 0) if rows else 0

    def get_tallies(self, resource_ids: list[str]) -> dict[str, int]:
        """Tallies for many resources in one query. Unvoted ids map to 0."""
        ids = list(resource_ids)
        if not ids:
            return {}
        pipeline = [
            {"$match": {"resourceId": {"$in": ids}}},
            {"$group": {"_id": "$resourceId", "total": {"$sum": "$value"}}},
        ]
        with store_boundary("get_tallies"):
            rows = self.store.aggregate(VOTES, pipeline)
        tallies = {rid: 0 for rid in ids}
        for row in rows:
            tallies[row["_id"]] = int(row["total"] or 0)
        return tallies


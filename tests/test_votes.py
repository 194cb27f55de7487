"""Unit tests for votes/ledger.py -- the vote state machine and live tallies.

Covers:
- the +1 / +1 / -1 / 0 / 0 transition sequence and its tallies
- idempotency of repeated votes
- multiple voters on one resource, batch tallies
- invalid values and unknown users / resources leave the store unchanged
- tally always equals the sum of the stored vote records
"""

import pytest

from core.errors import InvalidInput, NotFound
from core.service import ServiceContext
from votes.ledger import VOTES, VoteLedger, VoteOutcome, VoteState, vote_id


@pytest.fixture
def ledger(ctx: ServiceContext) -> VoteLedger:
    return ctx.votes


@pytest.fixture
def post_id(ctx: ServiceContext) -> str:
    ctx.store.create("posts", "post-1", {"title": "Hello", "date": 1})
    return "post-1"


def _stored_sum(ctx: ServiceContext, resource_id: str) -> int:
    return sum(r["value"] for r in ctx.store.get_many_by(VOTES, "resourceId", resource_id))


# ---------------------------------------------------------------------------
# TestTransitions
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_vote_sequence(self, ctx: ServiceContext, ledger: VoteLedger, register_user, post_id: str) -> None:
        """+1, +1, -1, 0, 0 -> tallies 1, 1, -1, 0, 0."""
        user, _ = register_user()
        expected = [
            (1, VoteState.UPVOTED, 1),
            (1, VoteState.UPVOTED, 1),
            (-1, VoteState.DOWNVOTED, -1),
            (0, VoteState.NO_VOTE, 0),
            (0, VoteState.NO_VOTE, 0),
        ]
        for value, state, tally in expected:
            outcome = ledger.apply_vote(user.id, post_id, value)
            assert outcome == VoteOutcome(state, tally)
            assert ledger.get_vote(user.id, post_id) is state
            assert ledger.get_tally(post_id) == _stored_sum(ctx, post_id)

    def test_one_record_per_user(self, ctx: ServiceContext, ledger: VoteLedger, register_user, post_id: str) -> None:
        user, _ = register_user()
        ledger.apply_vote(user.id, post_id, 1)
        ledger.apply_vote(user.id, post_id, -1)
        records = ctx.store.get_many_by(VOTES, "resourceId", post_id)
        assert len(records) == 1
        assert records[0]["id"] == vote_id(post_id, user.id)
        assert records[0]["value"] == -1

    def test_retract_deletes_record(self, ctx: ServiceContext, ledger: VoteLedger, register_user, post_id: str) -> None:
        user, _ = register_user()
        ledger.apply_vote(user.id, post_id, 1)
        ledger.apply_vote(user.id, post_id, 0)
        assert ctx.store.get(VOTES, vote_id(post_id, user.id)) is None

    def test_several_voters(self, ledger: VoteLedger, register_user, post_id: str) -> None:
        alice, _ = register_user("alice")
        bob, _ = register_user("bob")
        carol, _ = register_user("carol")
        ledger.apply_vote(alice.id, post_id, 1)
        ledger.apply_vote(bob.id, post_id, 1)
        assert ledger.apply_vote(carol.id, post_id, -1).tally == 1
        assert ledger.apply_vote(bob.id, post_id, 0).tally == 0

    def test_outcome_to_dict(self) -> None:
        assert VoteOutcome(VoteState.DOWNVOTED, -3).to_dict() == {"state": "DOWNVOTED", "value": -1, "tally": -3}


# ---------------------------------------------------------------------------
# TestTallies
# ---------------------------------------------------------------------------


class TestTallies:
    def test_unvoted_resource_is_zero(self, ledger: VoteLedger, post_id: str) -> None:
        assert ledger.get_tally(post_id) == 0
        assert ledger.get_tally("never-seen") == 0

    def test_get_tallies(self, ctx: ServiceContext, ledger: VoteLedger, register_user, post_id: str) -> None:
        ctx.store.create("posts", "post-2", {"title": "Second", "date": 2})
        alice, _ = register_user("alice")
        bob, _ = register_user("bob")
        ledger.apply_vote(alice.id, post_id, 1)
        ledger.apply_vote(bob.id, post_id, 1)
        ledger.apply_vote(alice.id, "post-2", -1)
        assert ledger.get_tallies([post_id, "post-2", "post-3"]) == {post_id: 2, "post-2": -1, "post-3": 0}
        assert ledger.get_tallies([]) == {}

    def test_no_vote_for_unknown_pair(self, ledger: VoteLedger, register_user, post_id: str) -> None:
        user, _ = register_user()
        assert ledger.get_vote(user.id, post_id) is VoteState.NO_VOTE


# ---------------------------------------------------------------------------
# TestRejections
# ---------------------------------------------------------------------------


class TestRejections:
    @pytest.mark.parametrize("value", [2, -2, True, "1", 0.5, None])
    def test_invalid_value(self, ctx: ServiceContext, ledger: VoteLedger, register_user, post_id: str, value) -> None:
        user, _ = register_user()
        with pytest.raises(InvalidInput):
            ledger.apply_vote(user.id, post_id, value)
        assert ctx.store.count(VOTES) == 0

    def test_unknown_resource(self, ctx: ServiceContext, ledger: VoteLedger, register_user) -> None:
        user, _ = register_user()
        with pytest.raises(NotFound):
            ledger.apply_vote(user.id, "missing-post", 1)
        assert ctx.store.count(VOTES) == 0

    def test_unknown_user(self, ctx: ServiceContext, ledger: VoteLedger, post_id: str) -> None:
        with pytest.raises(NotFound):
            ledger.apply_vote("ghost", post_id, 1)
        assert ctx.store.count(VOTES) == 0

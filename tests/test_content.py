"""Integration tests for content/ -- posts, comments and profiles.

Covers:
- post creation embeds an author snapshot and starts at 0 reactions
- listing is newest-first, paginated, and carries live reactions
- every mutation authenticates first: a bad token leaves the store unchanged
- comment ownership (Forbidden), soft delete, user expansion
- profile edits limited to the owner; register/login sessions
"""

import pytest

from content.comments import COMMENTS, CommentService
from content.posts import POSTS, PostService
from content.profiles import ProfileService
from core.errors import Forbidden, InvalidInput, NotFound, Unauthorized
from core.service import ServiceContext
from votes.ledger import VOTES, VoteState


@pytest.fixture
def posts(ctx: ServiceContext, clock) -> PostService:
    return PostService(ctx, clock=clock)


@pytest.fixture
def comments(ctx: ServiceContext, clock) -> CommentService:
    return CommentService(ctx, clock=clock)


@pytest.fixture
def profiles(ctx: ServiceContext) -> ProfileService:
    return ProfileService(ctx)


# ---------------------------------------------------------------------------
# TestPosts
# ---------------------------------------------------------------------------


class TestPosts:
    def test_create_post(self, posts: PostService, register_user) -> None:
        user, token = register_user()
        post = posts.create_post(token, "Hello", "First post", image="https://example.com/a.png")
        assert post["user"] == {"id": user.id, "username": "alice", "image": "https://robohash.org/alice"}
        assert post["title"] == "Hello"
        assert post["edited"] is False
        assert post["reactions"] == 0
        assert posts.get_post(post["id"])["body"] == "First post"

    def test_invalid_token_leaves_store_unchanged(self, ctx: ServiceContext, posts: PostService) -> None:
        with pytest.raises(Unauthorized):
            posts.create_post("garbage", "Hello", "First post")
        with pytest.raises(Unauthorized):
            posts.create_post(None, "Hello", "First post")
        assert ctx.store.count(POSTS) == 0

    def test_missing_title_rejected(self, ctx: ServiceContext, posts: PostService, register_user) -> None:
        _, token = register_user()
        with pytest.raises(InvalidInput):
            posts.create_post(token, "   ", "body")
        assert ctx.store.count(POSTS) == 0

    def test_list_is_newest_first_and_paginated(self, posts: PostService, register_user) -> None:
        _, token = register_user()
        created = [posts.create_post(token, f"Post {i}", "body") for i in range(5)]

        page = posts.list_posts(limit=2)
        assert [p["title"] for p in page["posts"]] == ["Post 4", "Post 3"]
        assert page["loadedAll"] is False

        page = posts.list_posts(limit=2, last=page["last"])
        assert [p["title"] for p in page["posts"]] == ["Post 2", "Post 1"]

        page = posts.list_posts(limit=2, last=page["last"])
        assert [p["id"] for p in page["posts"]] == [created[0]["id"]]
        assert page["loadedAll"] is True
        assert page["last"] is None

    def test_list_limit_is_capped(self, ctx: ServiceContext, posts: PostService, register_user) -> None:
        _, token = register_user()
        for i in range(ctx.settings.page_size_max + 3):
            posts.create_post(token, f"Post {i}", "body")
        assert len(posts.list_posts(limit=500)["posts"]) == ctx.settings.page_size_max
        with pytest.raises(InvalidInput):
            posts.list_posts(limit=0)

    def test_list_empty(self, posts: PostService) -> None:
        assert posts.list_posts() == {"posts": [], "loadedAll": True, "last": None}

    def test_votes_show_up_as_reactions(self, posts: PostService, register_user) -> None:
        _, alice = register_user("alice")
        _, bob = register_user("bob")
        post = posts.create_post(alice, "Hello", "body")
        posts.vote(alice, post["id"], 1)
        outcome = posts.vote(bob, post["id"], 1)
        assert outcome.tally == 2
        assert posts.get_post(post["id"])["reactions"] == 2
        assert posts.list_posts()["posts"][0]["reactions"] == 2
        assert posts.my_vote(bob, post["id"]) is VoteState.UPVOTED

    def test_vote_requires_authentication(self, ctx: ServiceContext, posts: PostService, register_user) -> None:
        _, token = register_user()
        post = posts.create_post(token, "Hello", "body")
        with pytest.raises(Unauthorized):
            posts.vote("garbage", post["id"], 1)
        assert ctx.store.count(VOTES) == 0

    def test_get_missing_post(self, posts: PostService) -> None:
        with pytest.raises(NotFound):
            posts.get_post("missing")

    def test_search(self, posts: PostService, register_user) -> None:
        _, token = register_user()
        posts.create_post(token, "Python tips", "body")
        posts.create_post(token, "Gardening", "all about PYTHONS in the garden")
        posts.create_post(token, "Cooking", "pasta")
        assert [p["title"] for p in posts.search_posts("python")] == ["Python tips", "Gardening"]
        with pytest.raises(InvalidInput):
            posts.search_posts("  ")
        for bad in (-1, 0, True):
            with pytest.raises(InvalidInput):
                posts.search_posts("python", limit=bad)
        assert len(posts.search_posts("python", limit=1)) == 1


# ---------------------------------------------------------------------------
# TestComments
# ---------------------------------------------------------------------------


class TestComments:
    @pytest.fixture
    def post(self, posts: PostService, register_user) -> dict:
        _, token = register_user("author")
        return posts.create_post(token, "Hello", "body")

    def test_create_expands_user(self, comments: CommentService, register_user, post: dict) -> None:
        user, token = register_user()
        comment = comments.create_comment(token, post["id"], "Nice post")
        assert comment["user"] == user.to_dict()
        assert comment["postId"] == post["id"]
        assert comment["parentCommentId"] is None
        assert comment["deleted"] is False

    def test_reply_and_list(self, comments: CommentService, register_user, post: dict) -> None:
        _, token = register_user()
        parent = comments.create_comment(token, post["id"], "first")
        reply = comments.create_comment(token, post["id"], "second", parent_comment_id=parent["id"])
        listed = comments.list_comments(post["id"])
        assert [c["id"] for c in listed] == [parent["id"], reply["id"]]
        assert listed[1]["parentCommentId"] == parent["id"]

    def test_comment_on_missing_post(self, ctx: ServiceContext, comments: CommentService, register_user) -> None:
        _, token = register_user()
        with pytest.raises(NotFound):
            comments.create_comment(token, "missing", "hi")
        assert ctx.store.count(COMMENTS) == 0

    def test_reply_to_missing_parent(self, comments: CommentService, register_user, post: dict) -> None:
        _, token = register_user()
        with pytest.raises(NotFound):
            comments.create_comment(token, post["id"], "hi", parent_comment_id="missing")

    def test_edit_by_author(self, comments: CommentService, register_user, post: dict) -> None:
        _, token = register_user()
        comment = comments.create_comment(token, post["id"], "typo")
        edited = comments.edit_comment(token, comment["id"], "fixed")
        assert edited["body"] == "fixed"
        assert isinstance(edited["edited"], int)
        assert edited["postId"] == post["id"]

    def test_edit_by_other_user_forbidden(self, comments: CommentService, register_user, post: dict) -> None:
        _, alice = register_user("alice")
        _, bob = register_user("bob")
        comment = comments.create_comment(alice, post["id"], "mine")
        with pytest.raises(Forbidden):
            comments.edit_comment(bob, comment["id"], "hijacked")
        with pytest.raises(Forbidden):
            comments.delete_comment(bob, comment["id"])
        assert comments.get_comment(comment["id"])["body"] == "mine"

    def test_soft_delete(self, comments: CommentService, register_user, post: dict) -> None:
        _, token = register_user()
        comment = comments.create_comment(token, post["id"], "regret")
        comments.delete_comment(token, comment["id"])
        stored = comments.get_comment(comment["id"])
        assert stored["body"] == "[deleted]"
        assert stored["deleted"] is True
        assert stored["user"] is None
        assert [c["id"] for c in comments.list_comments(post["id"])] == [comment["id"]]

    def test_edit_requires_authentication(self, comments: CommentService, register_user, post: dict) -> None:
        _, token = register_user()
        comment = comments.create_comment(token, post["id"], "original")
        with pytest.raises(Unauthorized):
            comments.edit_comment("garbage", comment["id"], "changed")
        assert comments.get_comment(comment["id"])["body"] == "original"

    def test_get_missing_comment(self, comments: CommentService) -> None:
        with pytest.raises(NotFound):
            comments.get_comment("missing")


# ---------------------------------------------------------------------------
# TestProfiles
# ---------------------------------------------------------------------------


class TestProfiles:
    def test_register_and_login_sessions(self, ctx: ServiceContext, profiles: ProfileService) -> None:
        session = profiles.register("alice", "hunter22")
        assert session["user"]["username"] == "alice"
        assert ctx.auth.require(session["token"]) == session["user"]["id"]
        again = profiles.login("alice", "hunter22")
        assert again["user"] == session["user"]

    def test_update_own_profile(self, profiles: ProfileService, register_user) -> None:
        user, token = register_user()
        updated = profiles.update_profile(token, user.id, description="About me")
        assert updated["description"] == "About me"
        assert updated["image"] == "https://robohash.org/alice"
        assert profiles.get_profile_by_username("alice")["description"] == "About me"

    def test_update_other_profile_forbidden(self, profiles: ProfileService, register_user) -> None:
        alice, _ = register_user("alice")
        _, bob = register_user("bob")
        with pytest.raises(Forbidden):
            profiles.update_profile(bob, alice.id, description="pwned")
        assert profiles.get_profile(alice.id)["description"] == ""

    def test_change_password(self, profiles: ProfileService, register_user) -> None:
        _, token = register_user()
        profiles.change_password(token, "hunter22", "new-password")
        assert profiles.login("alice", "new-password")["user"]["username"] == "alice"

    def test_unknown_profile(self, profiles: ProfileService) -> None:
        with pytest.raises(NotFound):
            profiles.get_profile_by_username("nobody")

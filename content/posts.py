"""
content/posts.py -- Post creation, listing and voting.

A post embeds a snapshot of its author ({id, username, image}) taken at
creation time. The vote tally is never stored on the post: every view attaches
a live `reactions` value computed by the VoteLedger, so a listing can never
disagree with the stored votes.

Listing is newest-first cursor pagination on `date` (epoch milliseconds):
pass the `date` of the last post you received as `last` to get the next page.
Pages hold at most PAGE_SIZE_MAX posts.

Layer rule: content/ may import from every other package.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import Optional

from core.errors import InvalidInput, NotFound, store_boundary
from core.service import ServiceContext
from docstore.models import Cursor, IndexSpec
from votes.ledger import VoteOutcome, VoteState

logger = logging.getLogger("threadboard.content")

POSTS = "posts"

TITLE_MAX_LENGTH = 300
BODY_MAX_LENGTH = 40_000

POST_INDEXES = [
    IndexSpec("date", ("date",), "equality"),
    IndexSpec("author", ("user.id",), "equality"),
    IndexSpec("title", ("title",), "text"),
    IndexSpec("body", ("body",), "text"),
]


def now_ms() -> int:
    return int(time.time() * 1000)


def _text(value, name: str, max_length: int, required: bool = True) -> Optional[str]:
    if value is None and not required:
        return None
    if not isinstance(value, str) or (required and not value.strip()):
        raise InvalidInput(f"Post {name} is required.")
    if len(value) > max_length:
        raise InvalidInput(f"Post {name} must be at most {max_length} characters.")
    return value


class PostService:
    """Posts on top of the document store, the auth pipeline and the ledger.

    Usage:
        posts = PostService(ctx)
        post = posts.create_post(token, "Hello", "First post")
        page = posts.list_posts(limit=10)
        posts.vote(token, post["id"], 1)
    """

    def __init__(self, ctx: ServiceContext, clock: Callable[[], int] = now_ms) -> None:
        self.ctx = ctx
        self.clock = clock
        ctx.store.register_indexes(POSTS, POST_INDEXES)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _with_reactions(self, posts: list[dict]) -> list[dict]:
        tallies = self.ctx.votes.get_tallies([p["id"] for p in posts])
        return [{**p, "reactions": tallies.get(p["id"], 0)} for p in posts]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_post(self, bearer: Optional[str], title: str, body: str, image: Optional[str] = None) -> dict:
        user_id = self.ctx.auth.require(bearer)
        _text(title, "title", TITLE_MAX_LENGTH)
        _text(body, "body", BODY_MAX_LENGTH)
        if image is not None and not isinstance(image, str):
            raise InvalidInput("Post image must be a URL string.")

        author = self.ctx.credentials.get_user(user_id)
        fields = {
            "user": {"id": author.id, "username": author.username, "image": author.image},
            "title": title,
            "body": body,
            "image": image,
            "date": self.clock(),
            "edited": False,
        }
        with store_boundary("create_post"):
            post = self.ctx.store.create(POSTS, str(uuid.uuid4()), fields)
        logger.info("Post %s created by %s", post["id"], author.username)
        return {**post, "reactions": 0}

    def get_post(self, post_id: str) -> dict:
        with store_boundary("get_post"):
            post = self.ctx.store.get(POSTS, post_id)
        if post is None:
            raise NotFound("Post not found.")
        return self._with_reactions([post])[0]

    def list_posts(self, limit: Optional[int] = None, last: Optional[int] = None) -> dict:
        """Return {"posts": [...], "loadedAll": bool, "last": date or None}.

        limit defaults to (and is capped at) the configured page size.
        """
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise InvalidInput("limit must be a positive integer.")
        if last is not None and (isinstance(last, bool) or not isinstance(last, (int, float))):
            raise InvalidInput("last must be a post date (epoch milliseconds).")
        with store_boundary("list_posts"):
            page = self.ctx.store.get_paginated(POSTS, limit, Cursor("date", last))
        return {
            "posts": self._with_reactions(page.items),
            "loadedAll": page.loaded_all,
            "last": page.next_cursor.value if page.next_cursor else None,
        }

    def search_posts(self, term: str, limit: Optional[int] = None) -> list[dict]:
        """Case-insensitive match on title or body, oldest first."""
        if not isinstance(term, str) or not term.strip():
            raise InvalidInput("A search term is required.")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise InvalidInput("limit must be a positive integer.")
        cap = self.ctx.settings.page_size_max
        limit = cap if limit is None else min(limit, cap)
        with store_boundary("search_posts"):
            found = self.ctx.store.search(POSTS, term.strip(), limit=limit)
        return self._with_reactions(found)

    def vote(self, bearer: Optional[str], post_id: str, value: int) -> VoteOutcome:
        user_id = self.ctx.auth.require(bearer)
        return self.ctx.votes.apply_vote(user_id, post_id, value)

    def my_vote(self, bearer: Optional[str], post_id: str) -> VoteState:
        user_id = self.ctx.auth.require(bearer)
        with store_boundary("my_vote"):
            exists = self.ctx.store.has(POSTS, post_id)
        if not exists:
            raise NotFound("Post not found.")
        return self.ctx.votes.get_vote(user_id, post_id)

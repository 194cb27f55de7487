"""
content/comments.py -- Threaded comments on posts.

Comments store their author as a user id; views expand it to the public User
dict. Deleting is soft: the document stays (so replies keep their parent) but
its body becomes "[deleted]", `deleted` is set and the author is cleared.
Only the author may edit or delete a comment.

Layer rule: content/ may import from every other package.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Optional

from auth.models import User
from auth.store import USERS
from content.posts import POSTS, now_ms
from core.errors import Forbidden, InvalidInput, NotFound, store_boundary
from core.service import ServiceContext
from docstore.models import DocumentNotFound, IndexSpec, Patch

logger = logging.getLogger("threadboard.content")

COMMENTS = "comments"
DELETED_BODY = "[deleted]"
BODY_MAX_LENGTH = 10_000

COMMENT_INDEXES = [
    IndexSpec("post", ("postId",), "equality"),
]


def _check_body(body) -> str:
    if not isinstance(body, str) or not body.strip():
        raise InvalidInput("Comment body is required.")
    if len(body) > BODY_MAX_LENGTH:
        raise InvalidInput(f"Comment body must be at most {BODY_MAX_LENGTH} characters.")
    return body


class CommentService:
    def __init__(self, ctx: ServiceContext, clock: Callable[[], int] = now_ms) -> None:
        self.ctx = ctx
        self.clock = clock
        ctx.store.register_indexes(COMMENTS, COMMENT_INDEXES)

    def _expand(self, comments: list[dict]) -> list[dict]:
        """Replace author ids with public user views, one query for all of them."""
        ids = sorted({c["user"] for c in comments if c.get("user")})
        with store_boundary("expand_comment_users"):
            docs = self.ctx.store.get_all(USERS, ids) if ids else []
        users = {d["id"]: User.from_doc(d).to_dict() for d in docs}
        return [{**c, "user": users.get(c["user"]) if c.get("user") else None} for c in comments]

    def _get_raw(self, comment_id: str) -> dict:
        with store_boundary("get_comment"):
            comment = self.ctx.store.get(COMMENTS, comment_id)
        if comment is None:
            raise NotFound("Comment not found.")
        return comment

    def _require_author(self, user_id: str, comment_id: str) -> dict:
        comment = self._get_raw(comment_id)
        if comment.get("user") != user_id:
            raise Forbidden("Only the author can change this comment.")
        return comment

    def _patch(self, comment_id: str, patch: Patch, operation: str) -> dict:
        with store_boundary(operation):
            try:
                return self.ctx.store.update(COMMENTS, comment_id, patch)
            except DocumentNotFound as exc:
                raise NotFound("Comment not found.") from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_comment(
        self,
        bearer: Optional[str],
        post_id: str,
        body: str,
        parent_comment_id: Optional[str] = None,
    ) -> dict:
        user_id = self.ctx.auth.require(bearer)
        _check_body(body)
        with store_boundary("create_comment"):
            if not self.ctx.store.has(POSTS, post_id):
                raise NotFound("Post not found.")
            if parent_comment_id is not None:
                parent = self.ctx.store.get(COMMENTS, parent_comment_id)
                if parent is None:
                    raise NotFound("Parent comment not found.")
                if parent.get("postId") != post_id:
                    raise InvalidInput("Parent comment belongs to a different post.")
            comment = self.ctx.store.create(
                COMMENTS,
                str(uuid.uuid4()),
                {
                    "postId": post_id,
                    "user": user_id,
                    "body": body,
                    "parentCommentId": parent_comment_id,
                    "deleted": False,
                    "date": self.clock(),
                    "edited": False,
                },
            )
        logger.info("Comment %s created on post %s", comment["id"], post_id)
        return self._expand([comment])[0]

    def list_comments(self, post_id: str) -> list[dict]:
        """All comments on a post, oldest first. Deleted ones are included."""
        with store_boundary("list_comments"):
            comments = self.ctx.store.find(COMMENTS, {"postId": post_id}, sort=[("date", 1)])
        return self._expand(comments)

    def get_comment(self, comment_id: str) -> dict:
        return self._expand([self._get_raw(comment_id)])[0]

    def edit_comment(self, bearer: Optional[str], comment_id: str, body: str) -> dict:
        user_id = self.ctx.auth.require(bearer)
        _check_body(body)
        self._require_author(user_id, comment_id)
        updated = self._patch(comment_id, Patch({"body": body, "edited": self.clock()}), "edit_comment")
        return self._expand([updated])[0]

    def delete_comment(self, bearer: Optional[str], comment_id: str) -> dict:
        self._require_author(self.ctx.auth.require(bearer), comment_id)
        patch = Patch({"body": DELETED_BODY, "deleted": True, "user": None})
        updated = self._patch(comment_id, patch, "delete_comment")
        logger.info("Comment %s deleted", comment_id)
        return self._expand([updated])[0]

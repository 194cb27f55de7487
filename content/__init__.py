"""content/ -- Resource handlers for posts, comments and user profiles.

Every mutating call authenticates its bearer token first; an unauthenticated
call never reaches the store.

Layer rule: content/ may import from every other package. Nothing imports
from content/ except main.py and tests.
"""

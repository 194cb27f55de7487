"""auth/ -- Credentials, bearer tokens and token verification for Threadboard.

Layer rule: auth/ may import from core/ and docstore/.
It does NOT import from votes/ or content/.
content/ imports from auth/, not the other way around.
"""

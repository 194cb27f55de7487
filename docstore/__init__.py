"""docstore/ -- Collection-oriented JSON document store over SQLAlchemy Core.

Layer rule: docstore/ is the leaf layer. It imports only stdlib + SQLAlchemy.
"""

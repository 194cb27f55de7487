"""votes/ -- Vote state machine and live tallies.

Layer rule: votes/ imports from core/ and docstore/ only.
"""

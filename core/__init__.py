"""core/ -- Settings, error taxonomy and the process-scoped ServiceContext.

Layer rule: config.py and errors.py import nothing from auth/, votes/ or
content/. service.py is the composition root and wires every package together.
"""

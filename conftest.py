"""
Root pytest configuration.

Its presence makes pytest put the repository root on ``sys.path`` so test
modules can import the package as ``src.wyrmgrad...`` without installing it.
"""

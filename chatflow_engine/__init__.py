"""
Conversational Workflow Engine

Compiles authored node/edge graphs into finite-state machines, interprets them
one conversational turn at a time, and runs side-effecting node executors
behind a uniform result contract.
"""

__version__ = "1.0.0"

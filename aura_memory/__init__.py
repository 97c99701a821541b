"""
Aura Memory — long-term memory for autonomous agents.

This package is the memory subsystem of the agent platform. It lets an agent
keep facts and preferences, learn from the runs it succeeded and failed at,
hold short-lived execution context per session, and periodically compress and
forget that knowledge so it stays useful and bounded in size.

Layers (bottom to top):
    1. Working memory (ephemeral per-session context)
    2. Factual and experiential stores (persistent, user-scoped records)
    3. Formation (event stream -> records)
    4. Retrieval (keyword + decay ranked recall)
    5. Consolidation (merge, rule extraction, pruning)
    6. MemorySystem (the public facade other components call)
"""

__version__ = "0.1.0"

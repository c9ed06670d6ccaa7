"""ActionPilot - plan execution core for a tool-calling assistant.

A user request becomes an ordered list of tool calls:
- Placeholders wire the output of earlier steps into later arguments
- Arguments are schema-checked and, once, repaired with model assistance
- Every state transition is streamed to the client and audited in history
"""

__version__ = "0.1.0"

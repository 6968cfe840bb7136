"""PAIRED Bridge — process-coordination gateway for the PAIRED agent team.

One long-lived service that every editor instance connects to. It keeps
track of connected instances and their sessions, routes each request to
the coordinator or to a named specialist, and correlates the specialist's
asynchronous reply back to the original caller.
"""

__version__ = "0.1.0"

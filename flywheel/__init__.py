"""Search indexing of work items: ids, sessions, events, index logs, synchronisation, search and tracing."""

__version__ = "0.1.0"
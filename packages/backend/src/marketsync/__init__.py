"""MarketSync — real-time marketplace listing service.

Clients hold a WebSocket open, receive the full listing catalog on connect,
and every create/update/delete they submit is persisted and then pushed to
all the other connected viewers.
"""

__version__ = "0.1.0"

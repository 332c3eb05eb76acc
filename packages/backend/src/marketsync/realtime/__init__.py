"""Real-time listing synchronization over WebSockets.

Learn: Three pieces cooperate:
1. protocol  — the wire format: inbound command envelopes, outbound messages
2. registry  — the live sessions and the send/broadcast primitives
3. commands  — the state machine that turns a command into a store write,
               an ack for the sender and a notification for everyone else

websocket.py wires them to FastAPI: one coroutine per connection.
"""

"""Real-time infrastructure — broadcast events, Redis pub/sub, WebSocket.

Learn: Events flow through two hops:
1. Services → Broadcaster → Redis PUBLISH on private-<channel>
2. Redis SUBSCRIBE → WebSocket → browser (only channels the user may join)

This decouples event producers (services) from consumers (WebSocket clients).
"""

"""Real-time infrastructure — report groups, fan-out hub, WebSocket.

Learn: Updates flow in one direction:
1. A trigger (Redis change feed, HTTP push, refresh scheduler) names a group
2. The hub asks the reporting service for that group's report
3. The hub fans the payload out to the group's WebSocket connections

Broadcasts (new transaction, low stock) skip groups and go to everyone.
"""

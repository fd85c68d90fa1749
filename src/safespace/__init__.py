"""SafeSpace — realtime layer of a supportive-care platform.

Guardians, children, therapists and admins exchange messages, join
groups, and raise panic alerts. Every state change is fanned out to the
right private broadcast channels so connected clients update live.
"""

__version__ = "0.1.0"

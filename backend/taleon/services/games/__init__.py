"""Game domain services: turn rotation, turn timers and judgement.

This package contains the game state machine that HTTP routes and socket
handlers call into, keeping transport concerns separated from core game
mechanics.
"""

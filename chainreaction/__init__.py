"""
Chain Reaction - Multiplayer atom-placement game engine

Two to four players take turns placing atoms on a grid. A cell that
reaches its critical mass explodes into its neighbors and conquers
them, which can set off further explosions. The engine provides:
- Deterministic board, cascade and turn rules
- A shared game record with in-memory and Redis backends
- A move protocol that lets independent clients share one game
- A REST/WebSocket API and a terminal client
"""

__version__ = "0.1.0"

"""
Aviary Flock Simulation

A deterministic, headless core for simulating large populations of flying
agents. Each tick, every agent perceives its neighbors, asks a pluggable
movement policy for an acceleration, and is integrated under a speed cap.

Architecture: the simulation owns agent state. Renderers and UIs are consumers.
"""

__version__ = "0.1.0"

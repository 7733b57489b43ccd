"""
Live Cricket Scoring Core

Ball-by-ball scoring for limited-overs matches: an append-only event log,
the innings/over engine and match lifecycle built on top of it, undo by
replay, and real-time fan-out of score deltas to scoreboard viewers.
"""

__version__ = "0.1.0"

"""LinkUp matching backend.

Queue enrollment, compatibility scoring, atomic pair selection, outcome
recording, weight learning and fairness monitoring.
"""

__version__ = "0.1.0"

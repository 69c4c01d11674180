"""Neural autopilot for cavern flight.

A 61-80-2 sigmoid network scores UP/DOWN from the three columns ahead of the
player plus its normalised row. Trained offline with full-batch Rprop.
"""

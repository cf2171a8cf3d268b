"""Command-line tools for the recommendation engine.

- ``python -m src.cli.recommend`` (or ``python -m src.cli``): query
  recommendations, song radio, playlist continuation and Daily Mixes,
  feed interactions to the real-time learner, and load a JSON catalog.
"""

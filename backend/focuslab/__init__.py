"""Focus session lifecycle and habit analytics engine.

This package holds the session state machine, streak tracking, time
aggregation and trend analysis used by the FastAPI application in
``focuslab.main``. Individual modules contain the concrete
implementations and documentation.
"""

"""Engine adapters.

Each adapter is imported from its own module so that a missing optional
solver (OR-Tools) does not break the others::

    from solverun.engines.pulp_engine import PulpEngine
    from solverun.engines.cpsat_engine import CpSatEngine
"""

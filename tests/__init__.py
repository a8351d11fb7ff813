"""Test package for Lexiscan.

The orchestrator and aggregator tests are pure-Python and drive time through
a fake clock. The smoke test runs the pygame UI headlessly using SDL's dummy
video/audio drivers. To run these tests, execute ``pytest`` from the project
root.
"""

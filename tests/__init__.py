"""Test package for the N-Back trainer.

Core tests drive the sequence generator, scorer and engine directly; the
headless simulations step a session driver with a fake clock. UI smoke tests
use pygame's dummy video/audio drivers so no real window opens. Run
``pytest`` from the project root.
"""

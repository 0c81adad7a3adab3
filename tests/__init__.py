"""Tests for catencode.

Subdirectories mirror the package: data/, encoders/, training/, mlops/ and
cli/. Shared fixtures live in conftest.py. Bayesian sampler tests are marked
``slow``; deselect them with ``-m "not slow"``.
"""

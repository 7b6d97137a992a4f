"""Repository-level pytest configuration.

Its presence puts the repository root on ``sys.path`` so test modules can
import shared helpers as ``tests.fakes``.
"""

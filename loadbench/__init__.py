"""loadbench: rate-paced load generation and latency measurement.

The engine in ``engine/`` drives any operation implementing the
``Operation`` contract across many long-lived connections; concrete HTTP
operations live in ``operations/`` and the command line in ``main.py``.
"""

__version__ = "0.1.0"

"""
ContextGraph: deterministic prompt assembly from graphs of context nodes.

Renders labeled, placeholder-bearing context blocks in dependency order,
records every render as a digest-stamped trace, and replays graphs over
datasets to detect output drift between runs.
"""

__version__ = "0.3.0"

"""
OrthoIQ Specialist Panel

Orchestrates a panel of recovery specialists: concurrent assessment,
a dialogue conference that surfaces disagreements, a synthesized plan,
and a prediction market settling tokens on observed outcomes.
"""

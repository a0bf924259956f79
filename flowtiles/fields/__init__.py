"""Integration and flow field construction."""

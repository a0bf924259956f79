"""Portals along region boundaries, the portal graph and route planning."""

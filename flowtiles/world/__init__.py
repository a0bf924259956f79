"""Region decomposition: dimensions, cost grids, clearance and sight lines."""

"""HTTP surface for the swap core."""

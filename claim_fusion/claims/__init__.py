"""Claim mapping, structural analysis, claim graph and survey."""

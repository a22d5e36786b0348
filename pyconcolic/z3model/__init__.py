"""
Z3 backend: expression translation and satisfiability queries.
"""

from .solver import SolverResult, SolverStatus, Z3Adapter

__all__ = ["SolverResult", "SolverStatus", "Z3Adapter"]

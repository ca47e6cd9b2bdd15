"""Hierarchical partitioning of large conic programs.

The stable top-level API covers the program model, the partitioner with its
weighting strategies and the solver boundary. Helpers such as the stop
predicates remain available from their submodules (for example
``conicsplit.partition.max_depth``).
"""

from .cones import ConeKind, Cone, NonNegativeOrthantCone, RotatedSecondOrderCone, SecondOrderCone, Variable
from .constraint import LinearConstraint
from .errors import ConicSplitError, NotRegisteredError, PreconditionError, SolveError, UnsupportedConeError
from .partition import HierarchicalPartitioner, Partition, PartitionerConfig, partition
from .program import ConicProgram, MatrixState
from .solver import ConicProgramSolver, CvxpySolver, SolverSettings, solve_leaves
from .weighting import ConeSizeWeighting, ObjectiveCoefficientWeighting, WeightingStrategy

__all__ = [
    "ConeKind",
    "Cone",
    "NonNegativeOrthantCone",
    "SecondOrderCone",
    "RotatedSecondOrderCone",
    "Variable",
    "LinearConstraint",
    "ConicProgram",
    "MatrixState",
    "Partition",
    "PartitionerConfig",
    "HierarchicalPartitioner",
    "partition",
    "WeightingStrategy",
    "ObjectiveCoefficientWeighting",
    "ConeSizeWeighting",
    "ConicProgramSolver",
    "CvxpySolver",
    "SolverSettings",
    "solve_leaves",
    "ConicSplitError",
    "NotRegisteredError",
    "UnsupportedConeError",
    "PreconditionError",
    "SolveError",
]

"""Graph-based tensor network container for chain states and operators."""

from dmrgjax.network.network import TensorNetwork, build_chain

__all__ = [
    "TensorNetwork",
    "build_chain",
]

"""
World <-> space-local conversions.

A "space" is the cumulative world transform of a reference node. Only rigid
transforms are expected; a singular space matrix is a caller error.
"""
import numpy as np
import transformations

from fabrik_rig.ik.scene import Node
from fabrik_rig.ik.utils import inv_q, matrix2q, mul_q, vector_norm


def decompose(matrix):
    matrix = np.asarray(matrix, dtype=np.float64)
    return matrix[:3, -1].copy(), matrix2q(matrix)


def world_to_local(space_matrix, position, quaternion=None):
    inverse = transformations.inverse_matrix(space_matrix)
    local_position = np.dot(inverse, np.append(position, 1))[:3]
    if quaternion is None:
        return local_position, None
    _, space_q = decompose(space_matrix)
    return local_position, mul_q(inv_q(space_q), quaternion)


def local_to_world(space_matrix, position, quaternion=None):
    world_position = np.dot(space_matrix, np.append(position, 1))[:3]
    if quaternion is None:
        return world_position, None
    _, space_q = decompose(space_matrix)
    return world_position, mul_q(space_q, quaternion)


def to_space(space_ref: Node, position, quaternion=None):
    return world_to_local(space_ref.world_matrix(), position, quaternion)


def from_space(space_ref: Node, position, quaternion=None):
    return local_to_world(space_ref.world_matrix(), position, quaternion)


def relative_matrix(ancestor: Node, descendant: Node):
    """Matrix taking ``descendant`` local coordinates into ``ancestor`` local coordinates."""
    return np.dot(transformations.inverse_matrix(ancestor.world_matrix()), descendant.world_matrix())


def translate_vector(vector, ancestor: Node, descendant: Node):
    matrix = relative_matrix(ancestor, descendant)
    return vector_norm(np.dot(matrix[:3, :3], vector))


def translate_quaternion(ancestor: Node, descendant: Node):
    return mul_q(inv_q(ancestor.world_quaternion()), descendant.world_quaternion())

import math

import numpy as np
import transformations
from numpy.testing import assert_allclose

from fabrik_rig.ik.scene import Node
from fabrik_rig.ik.transform import (decompose, from_space, local_to_world, relative_matrix, to_space,
                                     translate_quaternion, translate_vector, world_to_local)

QUARTER_Y = transformations.quaternion_about_axis(math.pi / 2, [0, 1, 0])


def same_rotation(q0, q1):
    return abs(np.dot(q0, q1)) > 1 - 1e-9


def space_node():
    scene = Node("scene")
    space = Node("space", position=[1, 2, 3], quaternion=QUARTER_Y)
    scene.add(space)
    return scene, space


def test_world_to_local_undoes_translation_and_rotation():
    _, space = space_node()
    # local +Z maps to world +X after a quarter turn about Y
    position, quaternion = to_space(space, [2, 2, 3], QUARTER_Y)
    assert_allclose(position, [0, 0, 1], atol=1e-12)
    assert same_rotation(quaternion, [1, 0, 0, 0])


def test_local_to_world_inverts_world_to_local():
    _, space = space_node()
    q = transformations.quaternion_about_axis(0.3, [1, 1, 0])
    local_pos, local_q = to_space(space, [4, -1, 0.5], q)
    world_pos, world_q = from_space(space, local_pos, local_q)
    assert_allclose(world_pos, [4, -1, 0.5], atol=1e-12)
    assert same_rotation(world_q, q)


def test_position_only_conversion_returns_no_quaternion():
    matrix = transformations.translation_matrix([0, -3, 0])
    position, quaternion = world_to_local(matrix, [0, 0, 0])
    assert quaternion is None
    assert_allclose(position, [0, 3, 0])
    assert_allclose(local_to_world(matrix, position)[0], [0, 0, 0])


def test_decompose():
    matrix = transformations.concatenate_matrices(transformations.translation_matrix([5, 6, 7]),
                                                  transformations.quaternion_matrix(QUARTER_Y))
    position, quaternion = decompose(matrix)
    assert_allclose(position, [5, 6, 7])
    assert same_rotation(quaternion, QUARTER_Y)


def test_relative_helpers():
    scene, space = space_node()
    child = Node("child", position=[0, 1, 0], quaternion=QUARTER_Y)
    space.add(child)
    assert_allclose(relative_matrix(space, child), child.local_matrix(), atol=1e-12)
    assert same_rotation(translate_quaternion(space, child), QUARTER_Y)
    # child's +Z is the space's +X
    assert_allclose(translate_vector([0, 0, 2], space, child), [1, 0, 0], atol=1e-12)
    assert_allclose(translate_vector([0, 0, 1], scene, child), [0, 0, -1], atol=1e-12)

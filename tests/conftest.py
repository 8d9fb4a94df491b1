import numpy as np
import pytest

from fabrik_rig.ik.scene import Bone, Node


def build_bones(parent: Node, count: int, step=(0.0, 1.0, 0.0)):
    """Straight line of bones under ``parent``; returns them root first."""
    bones = []
    node = parent
    for i in range(count):
        bone = Bone("bone_%d" % i, position=np.zeros(3) if i == 0 else step)
        node.add(bone)
        bones.append(bone)
        node = bone
    return bones


@pytest.fixture
def scene():
    return Node("scene")


@pytest.fixture
def straight_bones(scene):
    # root at the origin, three unit segments along +Y
    return build_bones(scene, 4)

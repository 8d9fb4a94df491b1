import numpy as np
import pytest
import transformations
from numpy.testing import assert_allclose

from fabrik_rig.ik.fabrik import FABRIK
from fabrik_rig.ik.ik_chain import BoneProxy, BoneProxyChain, ChainConfigurationError
from fabrik_rig.ik.scene import Marker, Node

from conftest import build_bones


def test_snapshot_walks_up_from_end_effector(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene)
    assert [p.name for p in chain.bone_proxies] == ["proxy_0", "proxy_1", "proxy_2", "proxy_3"]
    assert chain.bones == list(reversed(straight_bones))
    assert chain.anchor_bone is straight_bones[0]
    assert_allclose(chain.positions(), [[0, 3, 0], [0, 2, 0], [0, 1, 0], [0, 0, 0]])
    assert_allclose(chain.bone_lengths, [1, 1, 1])
    assert chain.total_length == pytest.approx(3)
    assert_allclose(chain.root_pos, [0, 0, 0])
    assert all(isinstance(p, BoneProxy) and p.parent is scene for p in chain.bone_proxies)


def test_partial_chain_and_space_offset(scene, straight_bones):
    space = Node("space", position=[0, -3, 0])
    scene.add(space)
    chain = BoneProxyChain(straight_bones[-1], 2, space)
    assert_allclose(chain.positions(), [[0, 6, 0], [0, 5, 0]])
    assert_allclose(chain.root_pos, [0, 5, 0])


def test_root_override(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene, root_pos=[0, 0.5, 0])
    assert_allclose(chain.root_pos, [0, 0.5, 0])
    FABRIK(chain).solve([1, 1, 1])
    assert_allclose(chain.root.position, [0, 0.5, 0])


def test_snapshot_is_detached(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene)
    straight_bones[1].position = np.array([5.0, 0, 0])
    assert_allclose(chain.bone_proxies[2].position, [0, 1, 0])


@pytest.mark.parametrize("chain_len", [0, 1])
def test_chain_too_short(scene, straight_bones, chain_len):
    with pytest.raises(ChainConfigurationError):
        BoneProxyChain(straight_bones[-1], chain_len, scene)


def test_null_end_effector(scene):
    with pytest.raises(ChainConfigurationError):
        BoneProxyChain(None, 3, scene)


def test_not_enough_ancestors_leaves_nothing_behind(scene, straight_bones):
    before = list(scene.children)
    # bone_3 -> bone_0 -> scene gives five joints at most
    with pytest.raises(ChainConfigurationError):
        BoneProxyChain(straight_bones[-1], 6, scene)
    assert scene.children == before
    assert issubclass(ChainConfigurationError, ValueError)


def test_debug_visualizers(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene, debug=True)
    spheres = [m for m in chain.bone_visualizers if m.kind == "sphere"]
    boxes = [m for m in chain.bone_visualizers if m.kind == "box"]
    assert len(spheres) == 4
    assert len(boxes) == 3
    assert all(isinstance(m, Marker) for m in chain.bone_visualizers)
    assert_allclose(boxes[0].size, [0.02, 1, 0.02])
    assert spheres[0].parent is chain.bone_proxies[0]


def test_no_visualizers_without_debug(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene)
    assert chain.bone_visualizers == []
    assert all(p.children == [] for p in chain.bone_proxies)


class Floor:
    """Keeps a joint above y = 0."""

    def __init__(self):
        self.calls = 0

    def apply_position(self, chain, index):
        self.calls += 1
        proxy = chain.bone_proxies[index]
        proxy.position[1] = max(proxy.position[1], 0.0)


class RotationRecorder:
    def __init__(self):
        self.indices = []

    def apply_rotation(self, chain, index):
        self.indices.append(index)


def test_constraints_dispatch_by_capability(scene, straight_bones):
    floor = Floor()
    recorder = RotationRecorder()
    chain = BoneProxyChain(straight_bones[-1], 4, scene, constraints={0: [floor, None], 2: [recorder]})
    result = FABRIK(chain, max_iter=3, tolerance=0).solve([1, -2, 0])
    assert result.iterations == 3
    # end effector: once in the forward pass, once in the backward pass
    assert floor.calls == 6
    assert recorder.indices == [2, 2, 2]
    assert chain.end_effector.position[1] >= 0


def test_unknown_constraint_mode(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene)
    with pytest.raises(ValueError):
        chain.apply_constraints(0, "twist")


def test_extend_towards_pole(scene, straight_bones):
    pole = Marker("pole", position=[3, 0, 4])
    scene.add(pole)
    chain = BoneProxyChain(straight_bones[-1], 4, scene, pole=pole)
    chain.extend_towards_pole()
    assert_allclose(chain.positions(), [[1.8, 0, 2.4], [1.2, 0, 1.6], [0.6, 0, 0.8], [0, 0, 0]], atol=1e-12)


def test_extend_without_pole_is_noop(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene)
    chain.extend_towards_pole()
    assert_allclose(chain.positions(), [[0, 3, 0], [0, 2, 0], [0, 1, 0], [0, 0, 0]])


def test_reach(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene)
    assert chain.reach([1, 1, 1])
    assert_allclose(chain.chain_direction(), [0, 1, 0])
    assert not chain.reach([10, 0, 0])


def test_write_back_moves_bones_onto_proxies(scene):
    hip = Node("hip", position=[2, 1, 0], quaternion=transformations.quaternion_about_axis(0.4, [0, 0, 1]))
    space = Node("space", position=[0, 0.5, 0])
    scene.add(hip, space)
    bones = build_bones(hip, 4, step=(0, 1, 0))
    pole = Marker("pole", position=[3, 3, 3])
    space.add(pole)
    chain = BoneProxyChain(bones[-1], 3, space, pole=pole)

    target = Marker("target", position=[3.2, 1.5, 0.6])
    space.add(target)
    FABRIK(chain, write_back=True).solve(target)

    for bone, proxy in zip(chain.bones, chain.bone_proxies):
        assert_allclose(bone.world_position(), proxy.world_position(), atol=1e-9)
        assert abs(np.dot(bone.world_quaternion(), proxy.world_quaternion())) == pytest.approx(1, abs=1e-9)
    # bones outside the chain are untouched
    assert_allclose(bones[0].position, [0, 0, 0])


def test_dispose(scene, straight_bones):
    chain = BoneProxyChain(straight_bones[-1], 4, scene)
    chain.dispose()
    assert not any(isinstance(node, BoneProxy) for node in scene.children)

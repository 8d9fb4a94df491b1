import logging

import numpy as np

from fabrik_rig.ik.scene import Marker, Node
from fabrik_rig.ik.transform import decompose, relative_matrix, to_space, world_to_local
from fabrik_rig.ik.utils import WORLD_UP, inv_q, mul_q, rot_point, safe_direction

logger = logging.getLogger(__name__)

CONSTRAINT_MODES = ("position", "rotation")


class ChainConfigurationError(ValueError):
    pass


class BoneProxy(Node):
    """
    Detached stand-in for a bone, expressed in the chain's space reference.
    """


class BoneProxyChain:
    """
    Snapshot of ``chain_len`` bones, from ``end_effector`` up its ancestors.

    bone_proxies[0] is the end effector, bone_proxies[-1] is the root joint.
    The skeleton is only read here; afterwards the proxies are the
    source of truth (``write_back`` pushes them back into the skeleton).
    """

    def __init__(self, end_effector: Node, chain_len: int, space_ref: Node, constraints: dict = None,
                 pole: Node = None, root_pos=None, debug: bool = False):
        if chain_len < 2:
            raise ChainConfigurationError("chain length must be at least 2, got %r" % chain_len)
        if end_effector is None:
            raise ChainConfigurationError("end effector must be non null")

        bones = [end_effector]
        for _ in range(chain_len - 1):
            parent = bones[-1].parent
            if parent is None:
                raise ChainConfigurationError(
                    "%r has only %d ancestors, chain needs %d joints" % (end_effector, len(bones) - 1, chain_len))
            bones.append(parent)

        self.name = ""
        self.chain_len = chain_len
        self.bones = bones
        self.end_effector_bone = end_effector
        self.anchor_bone = bones[-1]
        self.space_ref = space_ref
        self.pole = pole
        self.constraints = constraints or {}
        self.debug = debug

        space_matrix = space_ref.world_matrix()
        self.bone_proxies = []
        for i, bone in enumerate(bones):
            position, quaternion = world_to_local(space_matrix, bone.world_position(), bone.world_quaternion())
            self.bone_proxies.append(BoneProxy("proxy_%d" % i, position, quaternion))
            logger.debug("added proxy joint %d for %r", i, bone)
        space_ref.add(*self.bone_proxies)

        self.root_pos = np.array(self.bone_proxies[-1].position if root_pos is None else root_pos,
                                 dtype=np.float64)

        self.bone_lengths = []
        self.segment_directions = []
        for i in range(chain_len - 1):
            child, parent = self.bone_proxies[i].position, self.bone_proxies[i + 1].position
            self.bone_lengths.append(float(np.linalg.norm(child - parent)))
            self.segment_directions.append(safe_direction(child, parent, WORLD_UP))

        self.bone_visualizers = []
        if debug:
            self._add_visualizers()

    def _add_visualizers(self):
        for i, proxy in enumerate(self.bone_proxies):
            sphere = Marker("proxy_%d_vis" % i, kind="sphere", radius=0.2, color="magenta")
            proxy.add(sphere)
            self.bone_visualizers.append(sphere)
            if i > 0:
                # +Y of a joint points at its child once aligned
                length = self.bone_lengths[i - 1]
                box = Marker("proxy_%d_bone_vis" % i, position=[0, 0.5 * length, 0], kind="box",
                             color="white", size=[0.02, length, 0.02])
                sphere.add(box)
                self.bone_visualizers.append(box)

    @property
    def end_effector(self) -> BoneProxy:
        return self.bone_proxies[0]

    @property
    def root(self) -> BoneProxy:
        return self.bone_proxies[-1]

    @property
    def total_length(self) -> float:
        return sum(self.bone_lengths)

    def positions(self):
        return np.array([proxy.position for proxy in self.bone_proxies])

    def space_position(self, node: Node):
        """Position of ``node`` in the chain's space reference."""
        if node.parent is self.space_ref:
            return node.position.copy()
        return to_space(self.space_ref, node.world_position())[0]

    def space_quaternion(self, node: Node):
        if node.parent is self.space_ref:
            return node.quaternion.copy()
        return to_space(self.space_ref, node.world_position(), node.world_quaternion())[1]

    def chain_direction(self):
        return safe_direction(self.end_effector.position, self.root.position, self.segment_directions[-1])

    def reach(self, target_pos) -> bool:
        return np.linalg.norm(np.asarray(target_pos) - self.root_pos) <= self.total_length

    def apply_constraints(self, index: int, mode: str = "position"):
        if mode not in CONSTRAINT_MODES:
            raise ValueError("unknown constraint mode %r" % mode)
        for constraint in self.constraints.get(index) or ():
            apply = getattr(constraint, "apply_" + mode, None)
            if apply is not None:
                apply(self, index)

    def extend_towards_pole(self):
        """
        Lay the chain out straight from the root towards the pole.
        Used as the initial guess before iterating.
        """
        if self.pole is None:
            return
        direction = safe_direction(self.space_position(self.pole), self.root_pos, self.segment_directions[-1])
        self.root.position = self.root_pos.copy()
        for i in range(self.chain_len - 2, -1, -1):
            self.bone_proxies[i].position = self.bone_proxies[i + 1].position + direction * self.bone_lengths[i]
            self.segment_directions[i] = direction.copy()

    def write_back(self):
        """
        Copy the solved pose into the skeleton bones as parent-local transforms.
        """
        anchor_parent = self.anchor_bone.parent
        if anchor_parent is None:
            matrix = np.linalg.inv(self.space_ref.world_matrix())
        else:
            matrix = relative_matrix(self.space_ref, anchor_parent)
        parents = [(proxy.position, proxy.quaternion) for proxy in self.bone_proxies[1:]]
        parents.append(decompose(matrix))

        local = []
        for proxy, (parent_pos, parent_q) in zip(self.bone_proxies, parents):
            inverse = inv_q(parent_q)
            local.append((rot_point(inverse, proxy.position - parent_pos), mul_q(inverse, proxy.quaternion)))
        for bone, (position, quaternion) in zip(self.bones, local):
            bone.position = position
            bone.quaternion = quaternion

    def dispose(self):
        for proxy in self.bone_proxies:
            self.space_ref.remove(proxy)

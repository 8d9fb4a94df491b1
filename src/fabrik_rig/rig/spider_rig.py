import logging
import math
import numbers

import numpy as np

from fabrik_rig.ik.fabrik import FABRIK
from fabrik_rig.ik.ik_chain import BoneProxyChain
from fabrik_rig.ik.scene import Bone, Marker, Node
from fabrik_rig.ik.transform import relative_matrix, to_space
from fabrik_rig.ik.utils import (WORLD_UP, axis_rot2q, basis_to_q, fit_plane, mul_q, project_on_plane, rot_point,
                                 vector_norm)

logger = logging.getLogger(__name__)

LEFT, RIGHT = 0, 1
SIDES = (LEFT, RIGHT)

X_AXIS = np.array([1.0, 0.0, 0.0])

DEFAULT_LIMB_COUNT = 8
DEFAULT_LEVEL_LENGTHS = (1.0, 1.5, 1.0, 0.75)
# azimuth of each limb pair, front to back
DEFAULT_OY_ANGLES = (math.pi / 9 * 2, math.pi / 7 * 3, math.pi / 7 * 4, math.pi / 9 * 7)
# bend of each level around its local X, level 0 to the last non-terminal level
DEFAULT_OX_ANGLES = tuple(math.radians(a) for a in (20, -10, -60, -20))

TARGET_OFFSET = (0.0, 0.1, 0.1)
POLE_LIFT = 0.75


def flip_towards_anchor(center_anchor, anchor_target):
    """
    Flip ``anchor_target`` when it points back across the anchor, towards the center.
    """
    anchor_target = np.array(anchor_target, dtype=np.float64)
    if np.dot(center_anchor, anchor_target) < 0:
        return -anchor_target
    return anchor_target


def derive_pole_position(center, anchor, target, distance: float = 5.0, vertical_offset: float = 5.0,
                         blend: float = 0.5):
    """
    Pole for one limb, from the rig center, the limb's resting anchor and its live target.

    Directions are taken on the horizontal plane. The anchor->target direction is
    flipped to the anchor's side and weighted by how much it agrees with the
    anchor direction, so it fades out exactly where the flip happens.
    The pole sits ``vertical_offset`` above the target.
    """
    center = np.asarray(center, dtype=np.float64)
    anchor = np.asarray(anchor, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)

    center_anchor = vector_norm(project_on_plane(anchor - center, WORLD_UP))
    anchor_target = vector_norm(flip_towards_anchor(center_anchor, project_on_plane(target - anchor, WORLD_UP)))
    center_target = vector_norm(project_on_plane(target - center, WORLD_UP))
    if not center_target.any():
        center_target = center_anchor

    direction = vector_norm(center_target + blend * np.dot(center_anchor, anchor_target) * anchor_target)
    pole = center + direction * distance
    pole[1] = target[1] + vertical_offset
    return pole


def _warn_default(name, value, default):
    logger.warning("invalid %s %r, falling back to %r", name, value, default)
    return default


def _scalar_option(name, value, default):
    if value is None:
        return default
    try:
        value = float(value)
    except (TypeError, ValueError):
        return _warn_default(name, value, default)
    if not math.isfinite(value):
        return _warn_default(name, value, default)
    return value


def _table_option(name, value, size, default):
    if value is None:
        return list(default)
    try:
        table = [float(v) for v in value]
    except (TypeError, ValueError):
        return _warn_default(name, value, list(default))
    if (size is not None and len(table) != size) or not all(math.isfinite(v) for v in table):
        return _warn_default(name, value, list(default))
    return table


class SpiderRig:
    """
    Procedural rig of ``limb_count`` limbs in two mirrored halves.

    Everything passed to and returned from the update methods is expressed in
    ``parent_ref`` space, except ``set_target_positions`` which takes world
    positions. +Z is forward, side 0 is left (+X), side 1 is right (-X).
    """

    def __init__(self, parent_ref: Node, position=None, limb_count: int = DEFAULT_LIMB_COUNT,
                 level_lengths: list = None, oy_angles: list = None, ox_angles: list = None,
                 pole_distance_multiplier: float = 5.0, pole_vertical_offset: float = 5.0,
                 pole_anchor_blend: float = 0.5, tolerance: float = 0.01, max_iterations: int = 15,
                 write_back: bool = True, debug: bool = False):
        self.parent_ref = parent_ref
        self.debug = debug
        self._parse_options(limb_count, level_lengths, oy_angles, ox_angles)
        self.pole_distance_multiplier = _scalar_option("pole_distance_multiplier", pole_distance_multiplier, 5.0)
        self.pole_vertical_offset = _scalar_option("pole_vertical_offset", pole_vertical_offset, 5.0)
        self.pole_anchor_blend = _scalar_option("pole_anchor_blend", pole_anchor_blend, 0.5)
        self.tolerance = _scalar_option("tolerance", tolerance, 0.01)
        self.max_iterations = int(_scalar_option("max_iterations", max_iterations, 15))

        self.bone_root = Bone("spider_root", position)
        parent_ref.add(self.bone_root)

        self._build_bones()
        self.bone_visualizers = [[[], []] for _ in self.bone_levels]
        self.root_visualizer = None
        if debug:
            self._add_bone_visualizers()

        self.targets = [[], []]
        self.poles = [[], []]
        self.ik_chains = [[], []]
        self.ik_solvers = [[], []]
        last_level = len(self.bone_levels) - 1
        for side, i in self.limbs():
            target = Marker(self.limb_name(side, i, "target"), kind="sphere", radius=0.25, color="red")
            matrix = relative_matrix(parent_ref, self.bone_levels[last_level][side][i])
            target.position = np.dot(matrix, np.append(TARGET_OFFSET, 1))[:3]
            parent_ref.add(target)
            self.targets[side].append(target)

            # somewhere in the middle of the limb, raised a bit
            pole = Marker(self.limb_name(side, i, "pole"), kind="sphere", radius=0.1, color="yellow")
            pole.position = relative_matrix(parent_ref, self.bone_levels[last_level - 2][side][i])[:3, -1]
            pole.position[1] += POLE_LIFT
            parent_ref.add(pole)
            self.poles[side].append(pole)

            # level 0 stays static, the chain spans levels 1..last
            chain = BoneProxyChain(self.bone_levels[last_level][side][i], last_level, parent_ref, {},
                                   pole=pole, debug=debug)
            chain.name = self.limb_name(side, i, "chain")
            self.ik_chains[side].append(chain)
            self.ik_solvers[side].append(FABRIK(chain, self.tolerance, self.max_iterations, write_back=write_back))

    def _parse_options(self, limb_count, level_lengths, oy_angles, ox_angles):
        integral = isinstance(limb_count, numbers.Integral) and not isinstance(limb_count, bool)
        if not integral or limb_count <= 0 or limb_count % 2:
            limb_count = _warn_default("limb_count", limb_count, DEFAULT_LIMB_COUNT)
        self.limb_count = limb_count

        lengths = _table_option("level_lengths", level_lengths, None, DEFAULT_LEVEL_LENGTHS)
        if len(lengths) < 2 or not all(v > 0 for v in lengths):
            lengths = _warn_default("level_lengths", level_lengths, list(DEFAULT_LEVEL_LENGTHS))
        self.level_lengths = lengths

        half = self.limb_count // 2
        if half == len(DEFAULT_OY_ANGLES):
            oy_default = DEFAULT_OY_ANGLES
        else:
            oy_default = np.linspace(math.radians(40), math.radians(140), half).tolist()
        self.oy_angles = _table_option("oy_angles", oy_angles, half, oy_default)

        levels = len(self.level_lengths)
        ox_default = DEFAULT_OX_ANGLES if levels == len(DEFAULT_OX_ANGLES) else [0.0] * levels
        self.ox_angles = _table_option("ox_angles", ox_angles, levels, ox_default)

    def _build_bones(self):
        levels = len(self.level_lengths)
        # bone_levels[level][side][index]
        self.bone_levels = [[[], []] for _ in range(levels + 1)]
        self.ik_anchors = [[], []]

        for side, i in self.limbs():
            # trigonometric circle in the XZ plane, left is +X
            theta = (-1 if side else 1) * self.oy_angles[i]
            fwd = np.array([math.sin(theta), 0.0, math.cos(theta)])
            right = vector_norm(np.cross(fwd, WORLD_UP))

            bone = Bone(self.limb_name(side, i, "level0"), quaternion=basis_to_q(right, fwd, WORLD_UP))
            self.bone_root.add(bone)
            self.bone_levels[0][side].append(bone)
            # resting direction of the limb in bone_root space
            self.ik_anchors[side].append(fwd * self.level_lengths[0])

        for level in range(1, levels + 1):
            for side, i in self.limbs():
                bone = Bone(self.limb_name(side, i, "level%d" % level), position=[0, self.level_lengths[level - 1], 0])
                self.bone_levels[level - 1][side][i].add(bone)
                self.bone_levels[level][side].append(bone)

        # the last level has nothing to bend
        for level in range(levels):
            bend = axis_rot2q(X_AXIS, self.ox_angles[level])
            for side, i in self.limbs():
                bone = self.bone_levels[level][side][i]
                bone.quaternion = mul_q(bone.quaternion, bend)

    def _add_bone_visualizers(self):
        root_vis = Marker("spider_root_vis", kind="sphere", radius=0.15, color="green")
        self.bone_root.add(root_vis)
        self.root_visualizer = root_vis

        last_level = len(self.bone_levels) - 1
        for level, sides in enumerate(self.bone_levels):
            for side, i in self.limbs():
                bone = sides[side][i]
                if level < last_level:
                    length = self.level_lengths[level]
                    sphere = Marker(bone.name + "_vis", kind="sphere", radius=0.1, color="blue")
                    box = Marker(bone.name + "_bone_vis", position=[0, 0.5 * length, 0], kind="box",
                                 color="blue", size=[0.08, length, 0.08])
                    sphere.add(box)
                else:
                    sphere = Marker(bone.name + "_vis", kind="sphere", radius=0.1, color="red")
                bone.add(sphere)
                self.bone_visualizers[level][side].append(sphere)

    def limbs(self):
        for side in SIDES:
            for i in range(self.limb_count // 2):
                yield side, i

    @staticmethod
    def limb_name(side: int, index: int, suffix: str) -> str:
        return "spider_limb_%s_%d_%s" % ("r" if side else "l", index, suffix)

    def center(self):
        return self.bone_root.position.copy()

    def anchor_position(self, side: int, index: int):
        """Resting anchor of a limb in parent_ref space."""
        return self.center() + rot_point(self.bone_root.quaternion, self.ik_anchors[side][index])

    def update_ik_chain(self, side: int, index: int, target_pos=None, pole_pos=None):
        if target_pos is not None:
            self.targets[side][index].position = np.array(target_pos, dtype=np.float64)
        if pole_pos is not None:
            self.poles[side][index].position = np.array(pole_pos, dtype=np.float64)
        return self.ik_solvers[side][index].solve(self.targets[side][index], self.tolerance, self.max_iterations)

    def update_ik_chains(self, target_positions=None, pole_positions=None):
        results = [[], []]
        for side, i in self.limbs():
            results[side].append(self.update_ik_chain(side, i, _entry(target_positions, side, i),
                                                      _entry(pole_positions, side, i)))
        return results

    def set_target_positions(self, world_positions):
        for side, i in self.limbs():
            position = _entry(world_positions, side, i)
            if position is not None:
                self.targets[side][i].position = to_space(self.parent_ref, position)[0]

    def update_pole_positions(self, pole_positions=None):
        if pole_positions is not None:
            for side, i in self.limbs():
                position = _entry(pole_positions, side, i)
                if position is not None:
                    self.poles[side][i].position = np.array(position, dtype=np.float64)
            return

        center = self.center()
        for side, i in self.limbs():
            self.poles[side][i].position = derive_pole_position(
                center, self.anchor_position(side, i), self.targets[side][i].position,
                self.pole_distance_multiplier, self.pole_vertical_offset, self.pole_anchor_blend)

    def target_plane(self):
        """
        Least squares plane through the targets, normal facing up.
        """
        centroid, normal = fit_plane([self.targets[side][i].position for side, i in self.limbs()])
        if normal[1] < 0:
            normal = -normal
        return centroid, normal

    def debug_markers(self):
        """Every debug marker of the rig and its chains, boxes included."""
        if self.root_visualizer is not None:
            yield self.root_visualizer
        for sides in self.bone_visualizers:
            for markers in sides:
                for marker in markers:
                    yield marker
                    for child in marker.children:
                        if isinstance(child, Marker):
                            yield child
        for side, i in self.limbs():
            for marker in self.ik_chains[side][i].bone_visualizers:
                yield marker

    def set_debug_visible(self, visible: bool):
        for marker in self.debug_markers():
            marker.visible = visible

    def dispose(self):
        for side, i in self.limbs():
            self.ik_chains[side][i].dispose()
            self.parent_ref.remove(self.targets[side][i])
            self.parent_ref.remove(self.poles[side][i])
        self.parent_ref.remove(self.bone_root)


def _entry(table, side, index):
    if table is None or side >= len(table) or table[side] is None or index >= len(table[side]):
        return None
    return table[side][index]

import logging
import random

import numpy as np
import pyvista as pv
from tqdm import tqdm

from fabrik_rig.ik.scene import Marker, Node
from fabrik_rig.ik.transform import from_space
from fabrik_rig.rig.leg_stepper import LegStepper
from fabrik_rig.rig.spider_rig import SpiderRig

logger = logging.getLogger(__name__)


class RigVisible:
    def __init__(self, rig: SpiderRig, step: float = 0.1):
        self.rig = rig
        self.step = step
        self.selected = (0, 0)
        self.debug_visible = True
        self.joints = {}
        self.segments = {}
        self.targets = None
        self.poles = None
        self.markers = []
        self.plotter = None
        self.init_vista()

    def world_points(self, positions):
        return np.array([from_space(self.rig.parent_ref, p)[0] for p in positions])

    def marker_points(self, markers):
        return self.world_points([markers[side][i].position for side, i in self.rig.limbs()])

    def init_vista(self):
        plotter = pv.Plotter()
        self.plotter = plotter
        for side, i in self.rig.limbs():
            points = self.world_points(self.rig.ik_chains[side][i].positions())
            joints = pv.PolyData(points)
            segments = pv.lines_from_points(points)
            plotter.add_mesh(joints, color="magenta", point_size=12, render_points_as_spheres=True)
            plotter.add_mesh(segments, color=self.random_color(), line_width=4)
            self.joints[side, i] = joints
            self.segments[side, i] = segments
        self.targets = pv.PolyData(self.marker_points(self.rig.targets))
        self.poles = pv.PolyData(self.marker_points(self.rig.poles))
        plotter.add_mesh(self.targets, color="red", opacity=0.5, point_size=20, render_points_as_spheres=True)
        plotter.add_mesh(self.poles, color="yellow", opacity=0.5, point_size=10, render_points_as_spheres=True)
        for marker in self.rig.debug_markers():
            self.markers.append((marker, plotter.add_mesh(self.marker_mesh(marker), color=marker.color)))
        self.update_markers()
        self.set_shortcuts()

    def marker_mesh(self, marker: Marker):
        if marker.kind == "box":
            x, y, z = marker.size
            return pv.Cube(x_length=x, y_length=y, z_length=z)
        return pv.Sphere(radius=marker.radius)

    def update_markers(self):
        for marker, actor in self.markers:
            actor.user_matrix = marker.world_matrix()
            actor.visibility = marker.visible and all(node.visible for node in marker.ancestors())

    def set_shortcuts(self):
        self.plotter.add_key_event("1", self.move_target(2))
        self.plotter.add_key_event("2", self.move_target(2, reverse=True))
        self.plotter.add_key_event("4", self.move_target(0))
        self.plotter.add_key_event("5", self.move_target(0, reverse=True))
        self.plotter.add_key_event("7", self.move_target(1))
        self.plotter.add_key_event("8", self.move_target(1, reverse=True))
        self.plotter.add_key_event("n", self.select_next)
        self.plotter.add_key_event("d", self.toggle_debug)

    def toggle_debug(self):
        self.debug_visible = not self.debug_visible
        self.rig.set_debug_visible(self.debug_visible)
        self.update_markers()
        self.plotter.render()

    def select_next(self):
        limbs = list(self.rig.limbs())
        self.selected = limbs[(limbs.index(self.selected) + 1) % len(limbs)]
        logger.info("selected limb %s", self.rig.limb_name(*self.selected, "target"))

    def move_target(self, axis: int, reverse: bool = False):
        step = -self.step if reverse else self.step

        def handle():
            side, i = self.selected
            self.rig.targets[side][i].position[axis] += step
            self.update()

        return handle

    def update(self):
        self.rig.update_pole_positions()
        self.rig.update_ik_chains()
        for (side, i), joints in self.joints.items():
            points = self.world_points(self.rig.ik_chains[side][i].positions())
            joints.points = points
            self.segments[side, i].points = points
        self.targets.points = self.marker_points(self.rig.targets)
        self.poles.points = self.marker_points(self.rig.poles)
        self.update_markers()
        self.plotter.render()

    def play(self, frames: int = 600, fps: float = 60.0, stride: float = 1.0, step_time: float = 0.25,
             lift_amount: float = 0.7):
        """
        Demo walk in place: the two alternating leg groups step back and forth along Z.
        """
        rest = {(side, i): self.rig.targets[side][i].position.copy() for side, i in self.rig.limbs()}
        steppers = {limb: LegStepper(pos, pos, [0, 1, 0], step_time, lift_amount=lift_amount, curve_bias=0.7)
                    for limb, pos in rest.items()}
        self.plotter.show(interactive_update=True, auto_close=False)
        phase = -1
        for frame in tqdm(range(frames), ncols=80):
            now = frame / fps
            if int(now / step_time) != phase:
                phase = int(now / step_time)
                for (side, i), stepper in steppers.items():
                    if (side + i) % 2 == phase % 2:
                        offset = 0.5 * stride if (phase // 2) % 2 == 0 else -0.5 * stride
                        stepper.set_from(self.rig.targets[side][i].position)
                        stepper.set_to(rest[side, i] + [0, 0, offset])
            elapsed = now - phase * step_time
            for (side, i), stepper in steppers.items():
                if (side + i) % 2 == phase % 2:
                    self.rig.targets[side][i].position = stepper.position(elapsed)
            self.update()
            self.plotter.update()

    def visible(self):
        self.update()
        self.plotter.show_grid()
        self.plotter.show(auto_close=True)

    def random_color(self):
        color = [random.random(), random.random(), random.random()]
        return color


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    scene = Node("scene")
    RigVisible(SpiderRig(scene, debug=True)).visible()

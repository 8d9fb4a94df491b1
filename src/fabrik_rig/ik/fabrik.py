import logging
from collections import namedtuple

import numpy as np

from fabrik_rig.ik.ik_chain import BoneProxyChain
from fabrik_rig.ik.ik_solver import IKSolver
from fabrik_rig.ik.pole import align_bones, align_bones_and_pole
from fabrik_rig.ik.scene import Node
from fabrik_rig.ik.utils import IDENTITY_Q, safe_direction

logger = logging.getLogger(__name__)

SolveResult = namedtuple("SolveResult", ["converged", "iterations", "distance"])


class FABRIK(IKSolver):
    def __init__(self, chain: BoneProxyChain, tolerance: float = 0.01, max_iter: int = 50,
                 pole_initial_guess: bool = True, write_back: bool = False):
        super(FABRIK, self).__init__(chain, tolerance, max_iter)
        self.pole_initial_guess = pole_initial_guess  # restart from a straight chain pointing at the pole
        self.write_back = write_back  # copy the result into the skeleton bones

    def target_pose(self, target):
        if isinstance(target, Node):
            return self.chain.space_position(target), self.chain.space_quaternion(target)
        return np.array(target, dtype=np.float64), IDENTITY_Q.copy()

    def solve(self, target, tolerance: float = None, max_iterations: int = None) -> SolveResult:
        """
        Reach for ``target`` with forward/backward passes.
        Running out of iterations is not an error, the chain keeps its best effort pose.

        :param target: Node (position and orientation, read in the chain's space) or a bare position
            (identity orientation)
        :return: SolveResult
        """
        tolerance = self.tolerance if tolerance is None else tolerance
        max_iterations = self.max_iter if max_iterations is None else max_iterations
        target_pos, target_q = self.target_pose(target)

        if self.pole_initial_guess:
            self.chain.extend_towards_pole()

        converged = False
        iterations = 0
        distance = np.linalg.norm(self.chain.end_effector.position - target_pos)
        for i in range(max_iterations):
            self.forward(target_pos, target_q)
            self.backward()
            self.orient()
            iterations = i + 1
            distance = np.linalg.norm(self.chain.end_effector.position - target_pos)
            if distance < tolerance:
                converged = True
                logger.debug("FABRIK converged in %d iterations", iterations)
                break
        else:
            logger.debug("FABRIK stopped after %d iterations, %.5f from target", iterations, distance)

        if self.write_back:
            self.chain.write_back()
        return SolveResult(converged, iterations, float(distance))

    def forward(self, target_pos, target_q=None):
        chain = self.chain
        proxies = chain.bone_proxies
        proxies[0].position = np.array(target_pos, dtype=np.float64)
        if target_q is not None:
            proxies[0].quaternion = np.array(target_q, dtype=np.float64)
        chain.apply_constraints(0)

        for i in range(1, chain.chain_len):
            # i - 1 is the child of i
            direction = safe_direction(proxies[i - 1].position, proxies[i].position, chain.segment_directions[i - 1])
            chain.segment_directions[i - 1] = direction
            proxies[i].position = proxies[i - 1].position - direction * chain.bone_lengths[i - 1]
            chain.apply_constraints(i)

    def backward(self):
        chain = self.chain
        proxies = chain.bone_proxies
        chain.root.position = chain.root_pos.copy()

        for i in range(chain.chain_len - 2, -1, -1):
            # i + 1 is the parent of i
            direction = safe_direction(proxies[i].position, proxies[i + 1].position, chain.segment_directions[i])
            chain.segment_directions[i] = direction
            proxies[i].position = proxies[i + 1].position + direction * chain.bone_lengths[i]
            chain.apply_constraints(i)

    def orient(self):
        if self.chain.pole is not None:
            align_bones_and_pole(self.chain)
        else:
            align_bones(self.chain)
        for i in range(self.chain.chain_len):
            self.chain.apply_constraints(i, "rotation")

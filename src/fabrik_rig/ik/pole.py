import numpy as np

from fabrik_rig.ik.ik_chain import BoneProxyChain
from fabrik_rig.ik.utils import WORLD_UP, any_perpendicular, basis_to_q, safe_direction, vector_norm, vector_rot_q

Y_AXIS = np.array([0.0, 1.0, 0.0])


def bend_plane_normal(root_pos, tip_pos, pole_pos):
    """
    Normal of the plane spanned by root->tip and root->pole.
    Falls back to world up when the three points are collinear, or to any axis
    perpendicular to the chain when the chain itself is vertical.
    """
    chain_dir = vector_norm(np.asarray(tip_pos) - root_pos)
    pole_dir = vector_norm(np.asarray(pole_pos) - root_pos)
    normal = np.cross(chain_dir, pole_dir)
    if np.dot(normal, normal) < 1e-6:
        vertical = np.cross(chain_dir, WORLD_UP)
        if chain_dir.any() and np.dot(vertical, vertical) < 1e-6:
            return any_perpendicular(chain_dir)
        return WORLD_UP.copy()
    return normal / np.linalg.norm(normal)


def align_bones_and_pole(chain: BoneProxyChain):
    """
    Orient every joint so +Y points at its child and +Z stays in the pole plane.
    """
    proxies = chain.bone_proxies
    normal = bend_plane_normal(chain.root.position, chain.end_effector.position, chain.space_position(chain.pole))

    for i in range(chain.chain_len - 2, -1, -1):
        joint, child = proxies[i + 1], proxies[i]
        forward = safe_direction(child.position, joint.position, chain.segment_directions[i])
        up = np.cross(normal, forward)
        if np.dot(up, up) < 1e-8:
            # forward is parallel to the plane normal, keep the previous orientation
            continue
        up = vector_norm(up)
        right = vector_norm(np.cross(forward, up))
        joint.quaternion = basis_to_q(right, forward, up)


def align_bones(chain: BoneProxyChain):
    proxies = chain.bone_proxies
    for i in range(1, chain.chain_len):
        forward = safe_direction(proxies[i - 1].position, proxies[i].position, chain.segment_directions[i - 1])
        proxies[i].quaternion = vector_rot_q(Y_AXIS, forward)

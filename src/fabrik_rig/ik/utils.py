import math

import numpy as np
import transformations

EPSILON = 1e-9

WORLD_UP = np.array([0.0, 1.0, 0.0])
IDENTITY_Q = np.array([1.0, 0.0, 0.0, 0.0])


def vector_norm(vector: np.ndarray):
    vector = np.asarray(vector, dtype=np.float64)
    length = np.linalg.norm(vector)
    if length < EPSILON:
        return np.zeros_like(vector)
    return vector / length


def safe_direction(head, tail, fallback: np.ndarray):
    """
    Unit vector pointing from ``tail`` to ``head``.
    Coincident points have no direction, ``fallback`` is returned instead.
    """
    vector = np.asarray(head, dtype=np.float64) - np.asarray(tail, dtype=np.float64)
    length = np.linalg.norm(vector)
    if length < EPSILON:
        return np.array(fallback, dtype=np.float64)
    return vector / length


def project_on_plane(vector, normal):
    normal = vector_norm(normal)
    vector = np.asarray(vector, dtype=np.float64)
    return vector - np.dot(vector, normal) * normal


def any_perpendicular(vector):
    axis = np.cross(vector, [1.0, 0.0, 0.0])
    if np.linalg.norm(axis) < 1e-6:
        axis = np.cross(vector, [0.0, 1.0, 0.0])
    return vector_norm(axis)


def vector_rot_q(initial, target):
    """
    Shortest arc rotation taking direction ``initial`` onto direction ``target``.
    """
    initial_norm = vector_norm(initial)
    target_norm = vector_norm(target)
    cos_a = np.dot(initial_norm, target_norm)
    if cos_a > 1 - EPSILON:
        return IDENTITY_Q.copy()
    if cos_a < -1 + EPSILON:
        return axis_rot2q(any_perpendicular(initial_norm), math.pi)
    normal_vector = vector_norm(np.cross(initial_norm, target_norm))
    return axis_rot2q(normal_vector, math.acos(cos_a))


def basis_to_q(x, y, z):
    """
    Quaternion of the rotation whose local X, Y and Z axes are ``x``, ``y`` and ``z``.
    """
    matrix = np.eye(4)
    matrix[:3, 0] = x
    matrix[:3, 1] = y
    matrix[:3, 2] = z
    return matrix2q(matrix)


def axis_rot2q(vector, theta):
    return transformations.quaternion_about_axis(theta, vector)


def inv_q(q):
    return transformations.quaternion_inverse(q)


def mul_q(q0, q1):
    return transformations.quaternion_multiply(q0, q1)


def rot_point(q, p):
    return np.dot(transformations.quaternion_matrix(q)[:3, :3], p)


def q2matrix(q):
    return transformations.quaternion_matrix(q)


def matrix2q(matrix):
    return transformations.quaternion_from_matrix(matrix)


def trs_matrix(position, q):
    matrix = q2matrix(q)
    matrix[:3, -1] = position
    return matrix


def fit_plane(points):
    """
    Least squares plane through a point cloud.

    :param points: (n, 3) array like
    :return: centroid and unit normal, the normal's sign is arbitrary
    """
    points = np.asarray(points, dtype=np.float64)
    centroid = points.mean(axis=0)
    centered = points - centroid
    covariance = np.dot(centered.T, centered)
    _, vectors = np.linalg.eigh(covariance)
    # eigh sorts eigenvalues ascending, the smallest one spans the normal
    return centroid, vector_norm(vectors[:, 0])

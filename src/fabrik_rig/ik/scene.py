import numpy as np

from fabrik_rig.ik.utils import IDENTITY_Q, matrix2q, trs_matrix


class Node:
    """
    Minimal scene graph node: a local position/quaternion relative to its parent.
    """

    def __init__(self, name: str = "", position=None, quaternion=None):
        self.name = name
        self.position = np.zeros(3) if position is None else np.array(position, dtype=np.float64)
        self.quaternion = IDENTITY_Q.copy() if quaternion is None else np.array(quaternion, dtype=np.float64)
        self.parent = None
        self.children = []
        self.visible = True

    def __repr__(self):
        return "%s(%r)" % (type(self).__name__, self.name)

    def add(self, *nodes):
        for node in nodes:
            if node.parent is not None:
                node.parent.remove(node)
            node.parent = self
            self.children.append(node)
        return self

    def remove(self, node):
        if node in self.children:
            self.children.remove(node)
            node.parent = None

    def ancestors(self):
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def local_matrix(self):
        return trs_matrix(self.position, self.quaternion)

    def world_matrix(self):
        matrix = self.local_matrix()
        for node in self.ancestors():
            matrix = np.dot(node.local_matrix(), matrix)
        return matrix

    def world_position(self):
        return self.world_matrix()[:3, -1].copy()

    def world_quaternion(self):
        return matrix2q(self.world_matrix())


class Bone(Node):
    pass


class Marker(Node):
    """Non-skeletal helper: IK targets, poles and debug spheres/boxes."""

    def __init__(self, name: str = "", position=None, quaternion=None, kind: str = "sphere",
                 radius: float = 0.1, color=None, size=None):
        super(Marker, self).__init__(name, position, quaternion)
        self.kind = kind
        self.radius = radius
        self.color = color
        self.size = None if size is None else np.array(size, dtype=np.float64)

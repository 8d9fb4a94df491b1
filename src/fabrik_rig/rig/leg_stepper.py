import numpy as np

from fabrik_rig.ik.utils import vector_norm


def ease_out_quad(t):
    return t * (2 - t)


def linear(t):
    return t


class LegStepper:
    """
    Moves a foot from ``start`` to ``end`` along a quadratic Bezier arc.

    The control point sits at ``lerp(start, end, curve_bias)`` lifted by
    ``lift_amount`` along ``up``. Time is eased with ``ease_fn``.
    """

    def __init__(self, start, end, up, duration: float, lift_amount: float = 4.0, curve_bias: float = 0.5,
                 ease_fn=ease_out_quad):
        self.start = np.array(start, dtype=np.float64)
        self.end = np.array(end, dtype=np.float64)
        self.up = vector_norm(up)
        self.duration = duration
        self.lift_amount = lift_amount
        self.curve_bias = curve_bias
        self.ease_fn = ease_fn
        self.control = None
        self._compute_control_point()

    def _compute_control_point(self):
        self.control = self.start + (self.end - self.start) * self.curve_bias + self.up * self.lift_amount

    def set_from(self, start):
        self.start = np.array(start, dtype=np.float64)
        self._compute_control_point()

    def set_to(self, end):
        self.end = np.array(end, dtype=np.float64)
        self._compute_control_point()

    def set_up(self, up):
        self.up = vector_norm(up)
        self._compute_control_point()

    def set_control(self, control):
        self.control = np.array(control, dtype=np.float64)

    def set_duration(self, duration: float):
        self.duration = duration

    def set_easing(self, ease_fn):
        self.ease_fn = ease_fn

    def done(self, elapsed: float) -> bool:
        return elapsed >= self.duration

    def position(self, elapsed: float):
        t = 1.0 if self.duration <= 0 else min(max(elapsed / self.duration, 0.0), 1.0)
        t = self.ease_fn(t)
        a = (1 - t) ** 2
        b = 2 * (1 - t) * t
        c = t ** 2
        return self.start * a + self.control * b + self.end * c

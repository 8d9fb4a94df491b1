from fabrik_rig.ik.ik_chain import BoneProxyChain


class IKSolver:
    def __init__(self, chain: BoneProxyChain, tolerance: float = 0.01, max_iter: int = 50):
        self.chain = chain  # proxy chain being solved
        self.tolerance = tolerance  # end effector closer than this counts as reached
        self.max_iter = max_iter  # hard cap on iterations per solve

    def solve(self, target):
        raise NotImplementedError

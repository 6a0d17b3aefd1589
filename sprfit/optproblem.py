import numpy as np
from pymoo.core.problem import ElementwiseProblem

from sprfit.lossfn import context_error


class SurrogateFitProblem(ElementwiseProblem):
    """
    Single objective: F = [L2 error of the surrogate curves against the data].

    The context (surrogate + aligned data) is only read, so the problem can be
    evaluated by parallel runners without locking.
    """

    def __init__(self, ctx, xl, xu, elementwise_runner=None):
        kwargs = {} if elementwise_runner is None else {"elementwise_runner": elementwise_runner}
        super().__init__(
            n_var=len(xl),
            n_obj=1,
            n_ieq_constr=0,
            xl=np.asarray(xl, dtype=float),
            xu=np.asarray(xu, dtype=float),
            **kwargs
        )
        self.ctx = ctx

    def _evaluate(self, x, out, *args, **kwargs):
        out["F"] = np.array([context_error(x, self.ctx)], dtype=float)

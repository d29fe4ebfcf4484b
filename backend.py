# backend.py
# -----------------------------------------------------------------------------
# Minimal MIP backend interface used by the formulation, plus the gurobipy
# implementation. Variables and constraints are addressed by plain integer
# indices; linear expressions are sequences of (variable index, coefficient).
# -----------------------------------------------------------------------------

from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import gurobipy as gp
from gurobipy import GRB

from errors import BackendError


LinearTerms = Sequence[Tuple[int, float]]
# A lazy cut "Σ coeff·x ≥ rhs"
LazyCut = Tuple[LinearTerms, float]
# Called with the candidate solution vector; returns the cuts it violates.
LazySeparator = Callable[[np.ndarray], List[LazyCut]]

SENSES = ("<=", ">=", "==")

STATUS_NAMES = {
    1: "LOADED",
    2: "OPTIMAL",
    3: "INFEASIBLE",
    4: "INF_OR_UNBD",
    5: "UNBOUNDED",
    9: "TIME_LIMIT",
    11: "INTERRUPTED",
    13: "SUBOPTIMAL",
}


def _status_name(code) -> str:
    try:
        return STATUS_NAMES.get(int(code), str(code))
    except Exception:
        return str(code)


class MipBackend:
    """
    Interface of an integer-programming backend with lazy constraint support.

    Implementations must call the registered separator on every integral
    candidate solution and add the returned cuts as lazy constraints.
    """

    def add_var(self, lb: float = 0.0, ub: Optional[float] = None,
                integer: bool = True, name: str = "") -> int:
        raise NotImplementedError

    def add_constr(self, terms: LinearTerms, sense: str, rhs: float, name: str = "") -> int:
        raise NotImplementedError

    def set_objective(self, terms: LinearTerms) -> None:
        """Minimise Σ coeff·x."""
        raise NotImplementedError

    def set_lazy_separator(self, separator: LazySeparator) -> None:
        raise NotImplementedError

    def solve(self) -> str:
        """Run the optimisation; returns the status name."""
        raise NotImplementedError

    @property
    def status(self) -> str:
        raise NotImplementedError

    @property
    def objective_value(self) -> Optional[float]:
        raise NotImplementedError

    def solution_values(self) -> np.ndarray:
        raise NotImplementedError

    @property
    def int_tol(self) -> float:
        """Integrality tolerance used by the backend."""
        return 1e-6


class GurobiBackend(MipBackend):
    """
    gurobipy implementation.

    Params:
      threads     -> Params.Threads
      time_limit  -> Params.TimeLimit (seconds, None = unlimited)
      mip_gap     -> Params.MIPGap
      verbose     -> Params.OutputFlag
      write_model -> writes <name>.lp before optimising
    """

    def __init__(self, name: str = "TRANSIT_TOUR", *, threads: int = 1,
                 time_limit: Optional[float] = None, mip_gap: Optional[float] = None,
                 verbose: bool = False, write_model: bool = False):
        self.name = name
        self.write_model = write_model
        try:
            self.m = gp.Model(name)
            self.m.Params.OutputFlag = 1 if verbose else 0
            self.m.Params.Threads = int(threads)
            if time_limit is not None:
                self.m.Params.TimeLimit = float(time_limit)
            if mip_gap is not None:
                self.m.Params.MIPGap = float(mip_gap)
        except gp.GurobiError as e:
            raise BackendError(f"Backend setup failed: {e}") from e

        self._vars: List[gp.Var] = []
        self._constrs: List[gp.Constr] = []
        self._separator: Optional[LazySeparator] = None
        self._callback_error: Optional[BaseException] = None
        self.n_lazy_cuts = 0

    # ---------------------------- model building ----------------------------

    def add_var(self, lb=0.0, ub=None, integer=True, name=""):
        v = self.m.addVar(
            lb=lb,
            ub=GRB.INFINITY if ub is None else ub,
            vtype=GRB.INTEGER if integer else GRB.CONTINUOUS,
            name=name,
        )
        self._vars.append(v)
        return len(self._vars) - 1

    def _expr(self, terms: LinearTerms) -> gp.LinExpr:
        return gp.quicksum(c * self._vars[i] for i, c in terms)

    def add_constr(self, terms, sense, rhs, name=""):
        expr = self._expr(terms)
        if sense == "<=":
            c = self.m.addConstr(expr <= rhs, name=name)
        elif sense == ">=":
            c = self.m.addConstr(expr >= rhs, name=name)
        elif sense == "==":
            c = self.m.addConstr(expr == rhs, name=name)
        else:
            raise ValueError(f"Unknown constraint sense {sense!r} (expected one of {SENSES})")
        self._constrs.append(c)
        return len(self._constrs) - 1

    def set_objective(self, terms):
        self.m.setObjective(self._expr(terms), GRB.MINIMIZE)

    def set_lazy_separator(self, separator):
        self._separator = separator

    # ---------------------------- optimisation ----------------------------

    def _callback(self, model, where):
        if where != GRB.Callback.MIPSOL or self._separator is None:
            return
        try:
            values = np.asarray(model.cbGetSolution(self._vars), dtype=float)
            for terms, rhs in self._separator(values):
                model.cbLazy(self._expr(terms) >= rhs)
                self.n_lazy_cuts += 1
        except Exception as e:
            # exceptions must not escape the callback; re-raised after optimize()
            self._callback_error = e
            model.terminate()

    def solve(self):
        self.m.update()
        if self.write_model:
            self.m.write(f"{self.name}.lp")

        try:
            if self._separator is not None:
                self.m.Params.LazyConstraints = 1
                self.m.optimize(self._callback)
            else:
                self.m.optimize()
        except gp.GurobiError as e:
            raise BackendError(f"Backend failed: {e}", status=self.status) from e

        if self._callback_error is not None:
            raise self._callback_error
        return self.status

    # ---------------------------- results ----------------------------

    @property
    def status(self):
        return _status_name(self.m.Status)

    @property
    def objective_value(self):
        if self.m.SolCount > 0:
            return float(self.m.ObjVal)
        return None

    @property
    def runtime(self) -> Optional[float]:
        return getattr(self.m, "Runtime", None)

    @property
    def int_tol(self):
        return float(self.m.Params.IntFeasTol)

    def solution_values(self):
        if self.m.SolCount == 0:
            raise BackendError("No solution available", status=self.status)
        return np.asarray(self.m.getAttr("X", self._vars), dtype=float)

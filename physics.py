
import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import connected_components
from scipy.sparse.linalg import spsolve

from errors import NumericalError, SimulationCancelled
from network import MICRON

DARCY_TO_M2 = 9.869233e-13 # 1 Darcy in m^2
WATER_DENSITY = 1000.0     # kg/m^3
MIN_THROAT_LENGTH = 1e-3   # µm, floor for overlapping pores that produce zero-length throats
RESIDUAL_TOL = 1e-8
CONSERVATION_TOL = 1e-6


class FlowSolution:
    """
    Output contract shared by every flow solver.
    pressure_field: pore id -> Pa (pores cut off from the boundaries are omitted)
    throat_flow_rates: throat id -> m^3/s, positive from pore1 to pore2
    """

    def __init__(self, method, pressure_field, throat_flow_rates, total_flow_rate,
                 outlet_flow_rate, permeability_m2, iterations=1, info=None):
        self.method = method
        self.pressure_field = pressure_field
        self.throat_flow_rates = throat_flow_rates
        self.total_flow_rate = total_flow_rate
        self.outlet_flow_rate = outlet_flow_rate
        self.permeability_m2 = permeability_m2
        self.iterations = iterations
        self.info = info or {}

    @property
    def permeability_darcy(self):
        return self.permeability_m2 / DARCY_TO_M2

    def __repr__(self):
        return f"FlowSolution({self.method}, k={self.permeability_darcy:.4e} D, Q={self.total_flow_rate:.4e} m^3/s)"


def check_cancelled(cancel_token):
    if cancel_token is not None and cancel_token.is_set():
        raise SimulationCancelled("Simulation cancelled")


def throat_conductance(radius, length, viscosity):
    """
    Hagen-Poiseuille hydraulic conductance of a cylindrical throat.
    g = pi * r^4 / (8 * mu * L), with r and L given in µm.
    """
    r = np.asarray(radius, dtype=float) * MICRON
    l = np.maximum(np.asarray(length, dtype=float), MIN_THROAT_LENGTH) * MICRON
    return np.pi * r**4 / (8.0 * viscosity * l)


def build_conductance_matrix(i1, i2, g, n):
    """
    Weighted graph Laplacian: A_ii = sum of conductances at i, A_ij = -g_ij.
    A @ p gives the net flow leaving each node.
    """
    rows = [i1, i2, i1, i2]
    cols = [i2, i1, i1, i2]
    data = [-g, -g, g, g]

    rows = np.concatenate(rows)
    cols = np.concatenate(cols)
    data = np.concatenate(data)

    # Duplicate (row, col) pairs are summed by the COO -> CSR conversion
    A = sparse.coo_matrix((data, (rows, cols)), shape=(n, n))
    return A.tocsr()


class FlowProblem:
    """
    Index bookkeeping shared by the solvers for one network + boundary set.
    fixed/values: Dirichlet nodes and their pressures
    active: nodes in a component that touches at least one boundary pore
    """

    def __init__(self, network, bc, input_pressure, output_pressure, method):
        self.method = method
        self.n = network.n_pores
        self.i1, self.i2 = network.throat_endpoints()
        self.pore_ids = network.pore_ids
        self.throat_ids = network.throat_ids
        self.input_pressure = float(input_pressure)
        self.output_pressure = float(output_pressure)
        self.delta_p = abs(self.input_pressure - self.output_pressure)
        self.model_length = bc.model_length
        self.model_area = bc.model_area

        self.inlet = np.zeros(self.n, dtype=bool)
        self.outlet = np.zeros(self.n, dtype=bool)
        self.inlet[[network.pore_index(i) for i in bc.inlet]] = True
        self.outlet[[network.pore_index(i) for i in bc.outlet]] = True
        self.fixed = self.inlet | self.outlet

        self.values = np.zeros(self.n)
        self.values[self.inlet] = self.input_pressure
        self.values[self.outlet] = self.output_pressure

        self.radius = network.throat_radii()
        self.length = network.throat_lengths()
        self.active = np.ones(self.n, dtype=bool)

    def find_active(self, g, verbose=True):
        """
        Drops clusters that no boundary pore can reach (they make the system singular)
        and checks that at least one cluster links inlet to outlet.
        """
        conducting = g > 0
        adj = sparse.coo_matrix((np.ones(np.sum(conducting)), (self.i1[conducting], self.i2[conducting])),
                                shape=(self.n, self.n))
        n_comp, labels = connected_components(adj, directed=False)

        inlet_labels = set(labels[self.inlet].tolist())
        outlet_labels = set(labels[self.outlet].tolist())
        if not inlet_labels & outlet_labels:
            raise NumericalError(f"{self.method}: no conducting path from any inlet to any outlet pore",
                                 method=self.method)

        self.active = np.isin(labels, list(inlet_labels | outlet_labels))
        n_isolated = int(np.sum(~self.active))
        if n_isolated > 0 and verbose:
            print(f"  Warning: {n_isolated} pores in {n_comp - len(inlet_labels | outlet_labels)} clusters "
                  f"are not connected to the boundaries and are excluded from the solve.")
        return self.active


def solve_pressure(problem, g, verbose=False):
    """
    Solves A p = 0 on the free pores with Dirichlet pressures eliminated into the RHS.
    Returns the full pressure vector (NaN for excluded pores).
    """
    A = build_conductance_matrix(problem.i1, problem.i2, g, problem.n)
    p = problem.values.copy()
    free = problem.active & ~problem.fixed
    n_free = int(np.sum(free))
    free_idx = np.flatnonzero(free)
    fixed_idx = np.flatnonzero(problem.fixed)

    if n_free > 0:
        A_ff = A[free_idx][:, free_idx].tocsc()
        A_fb = A[free_idx][:, fixed_idx]
        b = -(A_fb @ problem.values[fixed_idx])

        if verbose:
            print(f"  Solving pressure system (A: {n_free}x{n_free}, nnz={A_ff.nnz})...")
        x = np.atleast_1d(spsolve(A_ff, b))

        if not np.all(np.isfinite(x)):
            raise NumericalError(f"{problem.method}: singular pressure system", method=problem.method)

        scale = np.abs(A_ff.diagonal()).max() * max(np.abs(problem.values[problem.fixed]).max(), problem.delta_p)
        residual = np.linalg.norm(A_ff @ x - b) / (scale * np.sqrt(n_free))
        if residual > RESIDUAL_TOL:
            raise NumericalError(f"{problem.method}: linear solve residual {residual:.3e} above tolerance",
                                 method=problem.method)
        p[free] = x

    p[~problem.active] = np.nan
    return p


def throat_flows(p, g, i1, i2):
    q = g * (p[i1] - p[i2])
    return np.where(np.isfinite(q), q, 0.0)


def boundary_flow(q, i1, i2, mask):
    """Net flow leaving the node set `mask` through throats crossing its border."""
    crossing = mask[i1] != mask[i2]
    sign = np.where(mask[i1], 1.0, -1.0)
    return float(np.sum(q[crossing] * sign[crossing]))


def darcy_permeability(flow_rate, viscosity, length, area, delta_p, method="darcy"):
    """k = Q * mu * L / (A * dP), in m^2."""
    if area <= 0 or length <= 0:
        raise NumericalError(f"{method}: degenerate sample dimensions (L={length:.3e} m, A={area:.3e} m^2)",
                             method=method)
    return abs(flow_rate) * viscosity * length / (area * delta_p)


def finish_solution(problem, p, q, viscosity, iterations=1, info=None, verbose=True):
    """Conservation check + Darcy's law; common tail of every solver."""
    q_in = boundary_flow(q, problem.i1, problem.i2, problem.inlet)
    q_out = -boundary_flow(q, problem.i1, problem.i2, problem.outlet)

    ref = max(abs(q_in), abs(q_out))
    if ref > 0 and abs(q_in - q_out) > CONSERVATION_TOL * ref:
        raise NumericalError(f"{problem.method}: flow not conserved (inlet {q_in:.6e}, outlet {q_out:.6e} m^3/s)",
                             method=problem.method)

    k = darcy_permeability(q_in, viscosity, problem.model_length, problem.model_area,
                           problem.delta_p, method=problem.method)

    pressure_field = {int(pid): float(pv) for pid, pv in zip(problem.pore_ids, p) if np.isfinite(pv)}
    flow_rates = {int(tid): float(qv) for tid, qv in zip(problem.throat_ids, q)}

    sol = FlowSolution(problem.method, pressure_field, flow_rates, abs(q_in), abs(q_out), k,
                       iterations=iterations, info=info)
    if verbose:
        print(f"  [{problem.method}] Q_in={q_in:.4e}, Q_out={q_out:.4e} m^3/s, "
              f"k={sol.permeability_darcy:.4e} D ({sol.permeability_darcy * 1000:.4e} mD)")
    return sol


def solve_darcy(network, bc, viscosity, input_pressure, output_pressure, verbose=True):
    """
    Darcy network solve: Hagen-Poiseuille throats, mass conservation at interior
    pores, inlet/outlet pores clamped to the imposed pressures.
    """
    problem = FlowProblem(network, bc, input_pressure, output_pressure, "darcy")
    g = throat_conductance(problem.radius, problem.length, viscosity)
    problem.find_active(g, verbose=verbose)

    p = solve_pressure(problem, g, verbose=verbose)
    q = throat_flows(p, g, problem.i1, problem.i2)
    return finish_solution(problem, p, q, viscosity, verbose=verbose)


def solve_navier_stokes(network, bc, viscosity, input_pressure, output_pressure,
                        density=WATER_DENSITY, loss_coefficient=1.0, tol=1e-8,
                        max_iterations=200, relaxation=0.5, cancel_token=None, verbose=True):
    """
    Network flow with an inertial (Forchheimer-type) term per throat:
        dP = R q + K q|q|,  R = 1/g,  K = k_loss * rho / (2 * A^2)
    The kinetic loss grows with the throat velocity, so the apparent
    permeability drops at high throat Reynolds number.

    Solved by Picard iteration on an effective conductance g_eff = 1/(R + K|q|),
    starting from the Darcy solution.
    """
    problem = FlowProblem(network, bc, input_pressure, output_pressure, "navier_stokes")
    g0 = throat_conductance(problem.radius, problem.length, viscosity)
    problem.find_active(g0, verbose=verbose)

    conducting = g0 > 0
    R = np.full_like(g0, np.inf)
    R[conducting] = 1.0 / g0[conducting]
    area = np.pi * (problem.radius * MICRON)**2
    K = np.zeros_like(g0)
    K[conducting] = loss_coefficient * density / (2.0 * area[conducting]**2)

    def effective_conductance(q):
        g = np.zeros_like(g0)
        g[conducting] = 1.0 / (R[conducting] + K[conducting] * np.abs(q[conducting]))
        return g

    p = solve_pressure(problem, g0)
    q = throat_flows(p, g0, problem.i1, problem.i2)

    if verbose:
        print(f"Starting inertial network solve (rho={density}, k_loss={loss_coefficient})...")

    converged = False
    change = np.inf
    for it in range(1, max_iterations + 1):
        check_cancelled(cancel_token)

        g = effective_conductance(q)
        p = solve_pressure(problem, g)
        q_new = throat_flows(p, g, problem.i1, problem.i2)

        norm = np.linalg.norm(q_new)
        change = np.linalg.norm(q_new - q) / norm if norm > 0 else 0.0
        if verbose and (it == 1 or it % 20 == 0):
            print(f"  Iteration {it}: relative flow change {change:.3e}")

        if change < tol:
            q = q_new
            converged = True
            break
        q = relaxation * q_new + (1.0 - relaxation) * q

    if not converged:
        raise NumericalError(f"navier_stokes: Picard iteration did not converge in {max_iterations} "
                             f"iterations (last change {change:.3e})", method="navier_stokes")

    velocity = np.zeros_like(q)
    velocity[conducting] = q[conducting] / area[conducting]
    reynolds = density * np.abs(velocity) * 2.0 * problem.radius * MICRON / viscosity
    max_re = float(reynolds.max()) if len(reynolds) > 0 else 0.0

    if verbose:
        print(f"  Converged in {it} iterations. Max throat Reynolds number: {max_re:.4f}")
    if max_re > 10 and verbose:
        print(f"  Warning: Reynolds number of {max_re:.1f} indicates turbulent throats; "
              "inertial results may be inaccurate without turbulence modelling.")

    info = {'max_reynolds': max_re, 'density': density, 'loss_coefficient': loss_coefficient}
    return finish_solution(problem, p, q, viscosity, iterations=it, info=info, verbose=verbose)

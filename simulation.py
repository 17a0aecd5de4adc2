from datetime import datetime
from types import MappingProxyType

import numpy as np

from boundary import FlowAxis, select_boundary_pores
from errors import NumericalError
from kozeny_carman import KOZENY_CONSTANT, estimate_permeability
from lattice import DEFAULT_SEGMENTS, solve_lattice_boltzmann
from physics import DARCY_TO_M2, WATER_DENSITY, check_cancelled, solve_darcy, solve_navier_stokes
from tortuosity import correct_permeability

# Solver methods in the order they run and are persisted
FLOW_METHODS = ('darcy', 'lattice_boltzmann', 'navier_stokes')
METHODS = FLOW_METHODS + ('kozeny_carman',)

METHOD_LABELS = {
    'darcy': "Darcy",
    'lattice_boltzmann': "Lattice-Boltzmann",
    'navier_stokes': "Navier-Stokes",
    'kozeny_carman': "Kozeny-Carman",
}

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class PermeabilitySimulationResult:
    """
    Snapshot of one simulation run. Frozen once built: assigning any
    attribute raises AttributeError, the pressure and flow maps are read-only
    views and the boundary pore ids are tuples.

    Permeabilities are stored in Darcy; every `*_md` attribute is derived as
    1000 x the Darcy value. Fields a run (or an older file version) did not
    produce keep their defaults: 0.0, empty maps, flags False.
    """

    def __init__(self, flow_axis=FlowAxis.X, viscosity=0.0, input_pressure=0.0, output_pressure=0.0,
                 tortuosity=1.0, model_length=0.0, model_area=0.0,
                 used_darcy=False, used_lattice_boltzmann=False, used_navier_stokes=False,
                 permeabilities=None, corrected_permeabilities=None,
                 pressure_field=None, lattice_boltzmann_pressure_field=None,
                 navier_stokes_pressure_field=None, throat_flow_rates=None, total_flow_rate=0.0,
                 inlet_pores=None, outlet_pores=None, timestamp="Unknown"):
        permeabilities = permeabilities or {}
        corrected_permeabilities = corrected_permeabilities or {}
        unknown = (set(permeabilities) | set(corrected_permeabilities)) - set(METHODS)
        if unknown:
            raise ValueError(f"Unknown permeability methods: {sorted(unknown)}")

        values = {
            'flow_axis': FlowAxis.parse(flow_axis),
            'viscosity': float(viscosity),
            'input_pressure': float(input_pressure),
            'output_pressure': float(output_pressure),
            'tortuosity': float(tortuosity),
            'model_length': float(model_length),
            'model_area': float(model_area),
            'used_darcy': bool(used_darcy),
            'used_lattice_boltzmann': bool(used_lattice_boltzmann),
            'used_navier_stokes': bool(used_navier_stokes),
            'pressure_field': MappingProxyType(dict(pressure_field or {})),
            'lattice_boltzmann_pressure_field': MappingProxyType(dict(lattice_boltzmann_pressure_field or {})),
            'navier_stokes_pressure_field': MappingProxyType(dict(navier_stokes_pressure_field or {})),
            'throat_flow_rates': MappingProxyType(dict(throat_flow_rates or {})),
            'total_flow_rate': float(total_flow_rate),
            'inlet_pores': tuple(inlet_pores or ()),
            'outlet_pores': tuple(outlet_pores or ()),
            'timestamp': timestamp,
        }
        for method in METHODS:
            values[f'{method}_permeability'] = float(permeabilities.get(method, 0.0))
            values[f'corrected_{method}_permeability'] = float(corrected_permeabilities.get(method, 0.0))

        for name, value in values.items():
            object.__setattr__(self, name, value)
        object.__setattr__(self, '_frozen', True)

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"PermeabilitySimulationResult is frozen, cannot set {name!r}")
        object.__setattr__(self, name, value)

    def __delattr__(self, name):
        raise AttributeError(f"PermeabilitySimulationResult is frozen, cannot delete {name!r}")

    def __getattr__(self, name):
        # Milli-Darcy views of every Darcy field
        if name.endswith('_permeability_md'):
            return 1000.0 * object.__getattribute__(self, name[:-3])
        raise AttributeError(name)

    def used(self, method):
        if method == 'kozeny_carman':
            return self.kozeny_carman_permeability > 0
        return getattr(self, f'used_{method}')

    def permeability(self, method, corrected=False):
        """Permeability of one method in Darcy."""
        if method not in METHODS:
            raise ValueError(f"Unknown method: {method}")
        prefix = 'corrected_' if corrected else ''
        return getattr(self, f'{prefix}{method}_permeability')

    def summary(self):
        lines = [
            "=== Permeability simulation ===",
            f"Date: {self.timestamp}",
            f"Flow axis: {self.flow_axis.name}",
            f"Viscosity: {self.viscosity:.4e} Pa.s",
            f"Pressure: {self.input_pressure:.4g} Pa -> {self.output_pressure:.4g} Pa",
            f"Sample: L={self.model_length:.4e} m, A={self.model_area:.4e} m^2",
            f"Boundary pores: {len(self.inlet_pores)} inlet, {len(self.outlet_pores)} outlet",
            f"Total flow rate: {self.total_flow_rate:.4e} m^3/s",
            f"Tortuosity: {self.tortuosity:.4f}",
            "",
            f"{'Method':<20}{'Raw (mD)':>16}{'Corrected (mD)':>18}",
        ]
        for method in FLOW_METHODS:
            if self.used(method):
                lines.append(f"{METHOD_LABELS[method]:<20}{self.permeability(method) * 1000:>16.4e}"
                             f"{self.permeability(method, corrected=True) * 1000:>18.4e}")
        if not any(self.used(m) for m in FLOW_METHODS):
            lines.append("  (no flow method produced a result)")

        kc = METHOD_LABELS['kozeny_carman'] + " (ref)"
        lines.append(f"{kc:<20}{self.kozeny_carman_permeability_md:>16.4e}"
                     f"{self.corrected_kozeny_carman_permeability_md:>18.4e}")
        return "\n".join(lines)

    def __repr__(self):
        used = [m for m in FLOW_METHODS if self.used(m)]
        return f"PermeabilitySimulationResult(axis={self.flow_axis.name}, methods={used})"


def _validate(network, viscosity, input_pressure, output_pressure, tortuosity, methods):
    if network.n_pores == 0 or network.n_throats == 0:
        raise ValueError("Network must contain pores and throats")
    if not np.isfinite(viscosity) or viscosity <= 0:
        raise ValueError(f"Viscosity must be positive, got {viscosity}")
    if not (np.isfinite(input_pressure) and np.isfinite(output_pressure)):
        raise ValueError("Pressures must be finite")
    if input_pressure == output_pressure:
        raise ValueError("Input and output pressure must differ")
    if not np.isfinite(tortuosity) or tortuosity < 1.0:
        raise ValueError(f"Tortuosity must be finite and >= 1, got {tortuosity}")
    if len(methods) == 0:
        raise ValueError("At least one simulation method must be selected")


def simulate(network, axis, viscosity, input_pressure, output_pressure,
             use_darcy=True, use_lattice=False, use_inertial=False,
             progress=None, cancel_token=None, tortuosity=None, margin=None,
             segments=DEFAULT_SEGMENTS, omega=1.0, density=WATER_DENSITY, loss_coefficient=1.0,
             kozeny_constant=KOZENY_CONSTANT, max_iterations=None, verbose=True):
    """
    Runs the selected permeability methods on one network and aggregates them.

    Args:
        network: PoreNetworkModel (read only)
        axis: flow axis (FlowAxis, 'x'/'y'/'z' or 0/1/2)
        viscosity: dynamic viscosity in Pa.s
        input_pressure, output_pressure: boundary pressures in Pa
        use_darcy, use_lattice, use_inertial: method selection
        progress: optional callable receiving an int percentage
        cancel_token: optional object with is_set() (e.g. threading.Event)
        tortuosity: overrides network.tortuosity for the correction
        margin: inlet/outlet band width in µm (None = 2x mean pore radius)
        max_iterations: iteration cap for the lattice and inertial solvers (None = solver default)

    A method that fails numerically is reported and left out (its used_* flag
    stays False); boundary problems and cancellation abort the whole run.

    Returns:
        PermeabilitySimulationResult
    """
    def report(percent):
        if progress is not None:
            progress(int(percent))

    methods = [m for m, on in zip(FLOW_METHODS, (use_darcy, use_lattice, use_inertial)) if on]
    tau = network.tortuosity if tortuosity is None else float(tortuosity)

    # 1. Validation
    _validate(network, viscosity, input_pressure, output_pressure, tau, methods)
    check_cancelled(cancel_token)
    report(5)

    # 2. Boundaries
    axis = FlowAxis.parse(axis)
    bc = select_boundary_pores(network, axis, margin=margin)
    report(15)

    # 3. Flow methods
    limits = {} if max_iterations is None else {'max_iterations': max_iterations}
    solvers = {
        'darcy': lambda: solve_darcy(network, bc, viscosity, input_pressure, output_pressure,
                                     verbose=verbose),
        'lattice_boltzmann': lambda: solve_lattice_boltzmann(network, bc, viscosity, input_pressure,
                                                             output_pressure, segments=segments, omega=omega,
                                                             cancel_token=cancel_token, verbose=verbose,
                                                             **limits),
        'navier_stokes': lambda: solve_navier_stokes(network, bc, viscosity, input_pressure, output_pressure,
                                                     density=density, loss_coefficient=loss_coefficient,
                                                     cancel_token=cancel_token, verbose=verbose, **limits),
    }

    solutions = {}
    slot = 75.0 / len(methods)
    for i, method in enumerate(methods):
        check_cancelled(cancel_token)
        if verbose:
            print(f"\n--- {METHOD_LABELS[method]} ---")
        try:
            solutions[method] = solvers[method]()
        except NumericalError as e:
            print(f"  Warning: {METHOD_LABELS[method]} failed and is skipped: {e}")
        report(15 + slot * (i + 1))

    check_cancelled(cancel_token)

    # 4. Kozeny-Carman reference
    try:
        k_kc, _ = estimate_permeability(network, bc.model_length, bc.model_area,
                                        kozeny_constant=kozeny_constant, verbose=verbose)
    except NumericalError as e:
        print(f"  Warning: Kozeny-Carman estimate unavailable: {e}")
        k_kc = 0.0
    report(95)

    # 5. Tortuosity correction
    raw = {m: sol.permeability_darcy for m, sol in solutions.items()}
    raw['kozeny_carman'] = k_kc / DARCY_TO_M2
    corrected = {m: correct_permeability(k, tau) for m, k in raw.items()}

    # 6. Shared fields from Darcy, else the first method that worked
    primary = None
    for method in FLOW_METHODS:
        if method in solutions:
            primary = solutions[method]
            break
    if primary is None:
        print("  Warning: none of the selected flow methods produced a result.")

    result = PermeabilitySimulationResult(
        flow_axis=axis,
        viscosity=viscosity,
        input_pressure=input_pressure,
        output_pressure=output_pressure,
        tortuosity=tau,
        model_length=bc.model_length,
        model_area=bc.model_area,
        used_darcy='darcy' in solutions,
        used_lattice_boltzmann='lattice_boltzmann' in solutions,
        used_navier_stokes='navier_stokes' in solutions,
        permeabilities=raw,
        corrected_permeabilities=corrected,
        pressure_field=primary.pressure_field if primary else None,
        lattice_boltzmann_pressure_field=solutions['lattice_boltzmann'].pressure_field
        if 'lattice_boltzmann' in solutions else None,
        navier_stokes_pressure_field=solutions['navier_stokes'].pressure_field
        if 'navier_stokes' in solutions else None,
        throat_flow_rates=primary.throat_flow_rates if primary else None,
        total_flow_rate=primary.total_flow_rate if primary else 0.0,
        inlet_pores=bc.inlet,
        outlet_pores=bc.outlet,
        timestamp=datetime.now().strftime(TIMESTAMP_FORMAT),
    )
    report(100)

    if verbose:
        print("\n" + result.summary())
    return result

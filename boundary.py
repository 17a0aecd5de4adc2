
from enum import IntEnum

import numpy as np

from errors import BoundaryConditionError
from network import MICRON

# Inlet/outlet layer thickness in units of the mean pore radius
LAYER_RADII = 2.0
# Never let a band reach past this fraction of the extent, so inlet and outlet stay disjoint
MAX_BAND_FRACTION = 0.45


class FlowAxis(IntEnum):
    X = 0
    Y = 1
    Z = 2

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown flow axis: {value!r} (expected x, y or z)")
        return cls(int(value))


class BoundaryConditions:
    """Inlet/outlet pore ids plus the sample dimensions used in Darcy's law."""

    def __init__(self, axis, inlet, outlet, model_length, model_area, band):
        self.axis = axis
        self.inlet = inlet
        self.outlet = outlet
        self.model_length = model_length # m
        self.model_area = model_area     # m^2
        self.band = band                 # µm

    def __repr__(self):
        return (f"BoundaryConditions(axis={self.axis.name}, inlet={len(self.inlet)}, "
                f"outlet={len(self.outlet)}, L={self.model_length:.4e} m, A={self.model_area:.4e} m^2)")


def select_boundary_pores(network, axis, margin=None):
    """
    Picks the pores adjacent to the min and max faces along the flow axis.

    margin: band width in µm. Defaults to 2x the mean pore radius, the layer
    thickness used when the network was generated. Either way it is capped
    below half the extent so a pore can never be both inlet and outlet.

    Raises BoundaryConditionError when either face ends up without pores.
    """
    axis = FlowAxis.parse(axis)
    if network.n_pores == 0:
        raise BoundaryConditionError("Network has no pores")

    coord = network.axis_coordinates(axis)
    cmin, cmax = coord.min(), coord.max()
    extent = cmax - cmin

    if margin is None:
        margin = LAYER_RADII * float(np.mean(network.pore_radii()))
    band = min(float(margin), MAX_BAND_FRACTION * extent)

    ids = network.pore_ids
    if extent <= 0 or band < 0:
        inlet_mask = np.zeros(len(ids), dtype=bool)
        outlet_mask = inlet_mask
    else:
        inlet_mask = (coord - cmin) <= band
        outlet_mask = (cmax - coord) <= band

    inlet = sorted(int(i) for i in ids[inlet_mask])
    outlet = sorted(int(i) for i in ids[outlet_mask])

    if len(inlet) == 0 or len(outlet) == 0:
        raise BoundaryConditionError(
            f"No {'inlet' if len(inlet) == 0 else 'outlet'} pores found along {axis.name} "
            f"(extent {extent:.4g} µm, band {band:.4g} µm)")

    # Cross-section from the pore spheres, not just the centres
    bounds = network.bounding_box()
    others = [i for i in range(3) if i != int(axis)]
    width = [(bounds[i][1] - bounds[i][0]) for i in others]

    model_length = extent * MICRON
    model_area = width[0] * width[1] * MICRON**2

    print(f"  Boundary ({axis.name}): {len(inlet)} inlet / {len(outlet)} outlet pores, "
          f"band={band:.3f} µm, L={model_length:.4e} m, A={model_area:.4e} m^2")

    return BoundaryConditions(axis, inlet, outlet, model_length, model_area, band)


import numpy as np

from errors import NumericalError
from network import MICRON
from physics import DARCY_TO_M2

KOZENY_CONSTANT = 5.0 # shape factor for packed spheres
POROSITY_LIMITS = (0.001, 0.999)


def geometric_porosity(network, bulk_volume):
    """
    Void fraction from the idealised shapes: spheres for pores, cylinders for throats.
    bulk_volume in m^3.
    """
    r_p = network.pore_radii() * MICRON
    r_t = network.throat_radii() * MICRON
    l_t = network.throat_lengths() * MICRON

    void = np.sum(4.0 / 3.0 * np.pi * r_p**3) + np.sum(np.pi * r_t**2 * l_t)
    return void / bulk_volume


def total_surface_area(network):
    """Sphere surfaces plus cylinder mantles (no end caps), in m^2."""
    r_p = network.pore_radii() * MICRON
    r_t = network.throat_radii() * MICRON
    l_t = network.throat_lengths() * MICRON
    return float(np.sum(4.0 * np.pi * r_p**2) + np.sum(2.0 * np.pi * r_t * l_t))


def estimate_permeability(network, model_length, model_area, kozeny_constant=KOZENY_CONSTANT, verbose=True):
    """
    Kozeny-Carman reference permeability, no graph traversal involved:

        k = phi^3 / (K0 * S^2 * (1 - phi)^2)

    phi: the network porosity when it lies strictly inside (0, 1), otherwise the
         geometric estimate over the bulk volume L * A
    S:   specific surface per unit solid volume

    Returns (k_m2, details) with details holding porosity and specific surface.
    """
    bulk = model_length * model_area
    if bulk <= 0:
        raise NumericalError(f"kozeny_carman: zero bulk volume (L={model_length:.3e} m, A={model_area:.3e} m^2)",
                             method="kozeny_carman")

    if 0.0 < network.porosity < 1.0:
        porosity = network.porosity
        source = "network"
    else:
        porosity = geometric_porosity(network, bulk)
        source = "geometry"
    porosity = float(np.clip(porosity, *POROSITY_LIMITS))

    surface = total_surface_area(network)
    if surface <= 0:
        raise NumericalError("kozeny_carman: network has no surface area", method="kozeny_carman")

    solid = (1.0 - porosity) * bulk
    specific_surface = surface / solid

    k = porosity**3 / (kozeny_constant * specific_surface**2 * (1.0 - porosity)**2)

    if verbose:
        print(f"  [kozeny_carman] porosity={porosity:.4f} ({source}), S={specific_surface:.4e} 1/m, "
              f"k={k / DARCY_TO_M2:.4e} D")

    details = {'porosity': porosity, 'porosity_source': source, 'specific_surface': specific_surface,
               'kozeny_constant': kozeny_constant}
    return k, details


import argparse

import numpy as np
import pandas as pd

from network import PoreNetworkModel


def generate_cubic_network(shape=(6, 6, 6), spacing=20.0, pore_radius=5.0, throat_radius=2.0,
                           jitter=0.0, seed=None, radius_spread=0.0, drop_fraction=0.0,
                           pixel_size=1e-6):
    """
    Builds a synthetic pore network on a simple cubic lattice.

    Args:
        shape: pores per axis (nx, ny, nz)
        spacing: centre-to-centre lattice spacing in µm
        pore_radius, throat_radius: mean radii in µm
        jitter: random displacement of the centres, as a fraction of spacing
        radius_spread: relative spread of the radii (uniform, +-)
        drop_fraction: fraction of throats removed at random
        seed: RNG seed for reproducible networks

    Throat length is the centre distance minus both pore radii (floored at
    10% of the spacing). Porosity is the void volume over the bounding box
    of the pore spheres; tortuosity is left at 1.0.
    """
    nx, ny, nz = shape
    if min(shape) < 1:
        raise ValueError(f"Network shape must be positive, got {shape}")
    if throat_radius > pore_radius:
        raise ValueError("Throat radius must not exceed pore radius")

    rng = np.random.default_rng(seed)

    # 1. Pore centres on the lattice, optionally jittered
    ix, iy, iz = np.meshgrid(np.arange(nx), np.arange(ny), np.arange(nz), indexing='ij')
    centers = np.stack([ix.ravel(), iy.ravel(), iz.ravel()], axis=1).astype(float) * spacing
    if jitter > 0:
        centers += rng.uniform(-jitter, jitter, centers.shape) * spacing

    n = len(centers)
    r_pore = pore_radius * (1.0 + rng.uniform(-radius_spread, radius_spread, n))

    # 2. Throats between face neighbours
    index = np.arange(n).reshape(nx, ny, nz)
    pairs = [
        np.stack([index[:-1, :, :].ravel(), index[1:, :, :].ravel()], axis=1),
        np.stack([index[:, :-1, :].ravel(), index[:, 1:, :].ravel()], axis=1),
        np.stack([index[:, :, :-1].ravel(), index[:, :, 1:].ravel()], axis=1),
    ]
    pairs = np.concatenate(pairs, axis=0)

    if drop_fraction > 0 and len(pairs) > 0:
        keep = rng.random(len(pairs)) >= drop_fraction
        pairs = pairs[keep]

    m = len(pairs)
    r_throat = throat_radius * (1.0 + rng.uniform(-radius_spread, radius_spread, m))
    r_throat = np.minimum(r_throat, np.minimum(r_pore[pairs[:, 0]], r_pore[pairs[:, 1]]))

    dist = np.linalg.norm(centers[pairs[:, 0]] - centers[pairs[:, 1]], axis=1)
    length = np.maximum(dist - r_pore[pairs[:, 0]] - r_pore[pairs[:, 1]], 0.1 * spacing)

    # 3. Tables
    pores = pd.DataFrame({
        'id': np.arange(1, n + 1),
        'x': centers[:, 0],
        'y': centers[:, 1],
        'z': centers[:, 2],
        'radius': r_pore,
        'volume': 4.0 / 3.0 * np.pi * r_pore**3,
        'area': 4.0 * np.pi * r_pore**2,
    })
    throats = pd.DataFrame({
        'id': np.arange(1, m + 1),
        'pore1': pairs[:, 0] + 1,
        'pore2': pairs[:, 1] + 1,
        'radius': r_throat,
        'length': length,
        'volume': np.pi * r_throat**2 * length,
    })

    lo = centers.min(axis=0) - r_pore.max()
    hi = centers.max(axis=0) + r_pore.max()
    box = float(np.prod(hi - lo))
    porosity = float(np.clip((pores['volume'].sum() + throats['volume'].sum()) / box, 0.0, 1.0))

    return PoreNetworkModel(pores, throats, pixel_size=pixel_size, porosity=porosity, tortuosity=1.0)


def two_pore_network(throat_radius=1.0, throat_length=10.0, pore_radius=None, spacing=None):
    """Two pores joined by a single throat along x, the closed-form test case."""
    if pore_radius is None:
        pore_radius = throat_radius
    if spacing is None:
        spacing = throat_length + 2.0 * pore_radius
    pores = [
        (1, 0.0, 0.0, 0.0, pore_radius, 4.0 / 3.0 * np.pi * pore_radius**3, 4.0 * np.pi * pore_radius**2),
        (2, spacing, 0.0, 0.0, pore_radius, 4.0 / 3.0 * np.pi * pore_radius**3, 4.0 * np.pi * pore_radius**2),
    ]
    throats = [(1, 1, 2, throat_radius, throat_length, np.pi * throat_radius**2 * throat_length)]
    return PoreNetworkModel.from_records(pores, throats)


def main():
    from network_io import save_network

    parser = argparse.ArgumentParser(description="Generate a synthetic cubic pore network file.")
    parser.add_argument("output", help="Output network file (.dat)")
    parser.add_argument("--shape", type=int, nargs=3, default=[6, 6, 6], help="Pores per axis: NX NY NZ")
    parser.add_argument("--spacing", type=float, default=20.0, help="Lattice spacing in µm")
    parser.add_argument("--pore-radius", type=float, default=5.0, help="Mean pore radius in µm")
    parser.add_argument("--throat-radius", type=float, default=2.0, help="Mean throat radius in µm")
    parser.add_argument("--jitter", type=float, default=0.1, help="Centre jitter as a fraction of spacing")
    parser.add_argument("--spread", type=float, default=0.2, help="Relative radius spread")
    parser.add_argument("--drop", type=float, default=0.0, help="Fraction of throats removed")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    args = parser.parse_args()

    network = generate_cubic_network(tuple(args.shape), spacing=args.spacing, pore_radius=args.pore_radius,
                                      throat_radius=args.throat_radius, jitter=args.jitter, seed=args.seed,
                                      radius_spread=args.spread, drop_fraction=args.drop)
    print(f"Generated {network}")
    save_network(network, args.output)


if __name__ == "__main__":
    main()

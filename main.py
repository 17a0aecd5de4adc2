
import argparse
import sys

from errors import BoundaryConditionError, FormatError, VersionError
from generate_network import generate_cubic_network
from network_io import RawLayout, load_network, save_network
from result_io import save_result
from simulation import simulate
from tortuosity import estimate_tortuosity


def build_parser():
    parser = argparse.ArgumentParser(description="Estimate the permeability of a pore network.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--network", "-n", help="Input pore network file (.dat)")
    source.add_argument("--generate", type=int, nargs=3, metavar=("NX", "NY", "NZ"),
                        help="Use a synthetic cubic network with NX x NY x NZ pores")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for --generate")
    parser.add_argument("--axis", "-a", default="x", choices=["x", "y", "z"], help="Flow axis")
    parser.add_argument("--viscosity", type=float, default=1e-3, help="Dynamic viscosity in Pa.s (default water)")
    parser.add_argument("--input-pressure", type=float, default=2000.0, help="Inlet pressure in Pa")
    parser.add_argument("--output-pressure", type=float, default=1000.0, help="Outlet pressure in Pa")
    parser.add_argument("--darcy", action="store_true", help="Run the Darcy network solver")
    parser.add_argument("--lattice", action="store_true", help="Run the lattice (mesoscopic) solver")
    parser.add_argument("--inertial", action="store_true", help="Run the inertial (Navier-Stokes) solver")
    parser.add_argument("--tortuosity", type=float, help="Override the network tortuosity for the correction")
    parser.add_argument("--estimate-tortuosity", action="store_true",
                        help="Estimate tortuosity from shortest paths along the flow axis")
    parser.add_argument("--margin", type=float, help="Inlet/outlet band width in µm (default 2x mean pore radius)")
    parser.add_argument("--density", type=float, default=1000.0, help="Fluid density for the inertial solver (kg/m^3)")
    parser.add_argument("--segments", type=int, default=4, help="Lattice links per throat")
    parser.add_argument("--output", "-o", help="Save the result file (.dat)")
    parser.add_argument("--save-network", help="Save the (loaded or generated) network file")
    parser.add_argument("--raw-pores", type=int, help="Raw recovery: number of pore records")
    parser.add_argument("--raw-throats", type=int, help="Raw recovery: number of throat records")
    parser.add_argument("--raw-pixel-size", type=float, default=1e-6, help="Raw recovery: pixel size in m")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print the summary")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # 1. Network
    try:
        if args.generate:
            print(f"Generating cubic network {args.generate[0]}x{args.generate[1]}x{args.generate[2]}...")
            network = generate_cubic_network(tuple(args.generate), jitter=0.1, radius_spread=0.2, seed=args.seed)
        else:
            raw_layout = None
            if args.raw_pores is not None:
                raw_layout = RawLayout(args.raw_pores, args.raw_throats or 0, args.raw_pixel_size)
            print(f"Loading network from {args.network}...")
            network = load_network(args.network, raw_layout=raw_layout)
    except FormatError as e:
        hint = " (try --raw-pores/--raw-throats to recover raw data)" if e.recoverable else ""
        print(f"Error: {e}{hint}")
        return 1
    except VersionError as e:
        print(f"Error: {e}")
        return 1
    except FileNotFoundError:
        print(f"Error: File '{args.network}' not found.")
        return 1

    print(network)
    if args.save_network:
        save_network(network, args.save_network)

    # 2. Tortuosity
    tortuosity = args.tortuosity
    if args.estimate_tortuosity:
        print(f"Estimating tortuosity along {args.axis.upper()}...")
        tau = estimate_tortuosity(network, axis=args.axis)
        if tau == float('inf'):
            print("  Warning: no flow path for the tortuosity estimate, using the network value.")
        else:
            print(f"  Tortuosity: {tau:.4f}")
            tortuosity = tau

    # 3. Simulation; Darcy alone when nothing is selected
    use_darcy = args.darcy or not (args.lattice or args.inertial)

    def progress(percent):
        if not args.quiet:
            print(f"  [{percent:3d}%]")

    try:
        result = simulate(network, args.axis, args.viscosity, args.input_pressure, args.output_pressure,
                          use_darcy=use_darcy, use_lattice=args.lattice, use_inertial=args.inertial,
                          progress=progress, tortuosity=tortuosity, margin=args.margin,
                          segments=args.segments, density=args.density, verbose=not args.quiet)
    except BoundaryConditionError as e:
        print(f"Error: {e}")
        return 1
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if args.quiet:
        print(result.summary())

    # 4. Save
    if args.output:
        save_result(result, args.output)

    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

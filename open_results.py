
import argparse
import sys

from errors import FormatError, TruncationError, VersionError
from network_io import load_network
from result_io import load_result


def main(argv=None):
    parser = argparse.ArgumentParser(description="Print the summary of a permeability result file.")
    parser.add_argument("file", help="Path to the result file (.dat)")
    parser.add_argument("--network", "-n", help="Network file, supplies the tortuosity for old v1 results")
    parser.add_argument("--pressures", action="store_true", help="Also list the pore pressures")
    args = parser.parse_args(argv)

    network = None
    try:
        if args.network:
            network = load_network(args.network)
        print(f"Loading results from {args.file}...")
        result = load_result(args.file, network=network)
    except FileNotFoundError as e:
        print(f"Error: File '{e.filename}' not found.")
        return 1
    except (FormatError, VersionError, TruncationError) as e:
        print(f"Error: {e}")
        return 1

    print(result.summary())

    if args.pressures:
        print("\nPore pressures (Pa):")
        for pore_id, p in sorted(result.pressure_field.items()):
            print(f"  {pore_id:>8d}  {p:.6e}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

import os
import subprocess
import sys
import tempfile

from network_io import load_network
from result_io import load_result

HERE = os.path.dirname(os.path.abspath(__file__))


def run(args):
    cmd = [sys.executable] + args
    print("Running command:", " ".join(cmd))
    return subprocess.run(cmd, cwd=HERE, capture_output=True, text=True)


def test_cli_pipeline():
    print("\n--- Testing CLI pipeline ---")
    with tempfile.TemporaryDirectory() as tmp:
        result_path = os.path.join(tmp, "result.dat")
        network_path = os.path.join(tmp, "network.dat")

        proc = run(["main.py", "--generate", "4", "3", "3", "--darcy", "--lattice",
                    "--estimate-tortuosity", "--output", result_path, "--save-network", network_path])
        print(proc.stdout[-2000:])
        assert proc.returncode == 0, proc.stdout + proc.stderr
        assert os.path.exists(result_path) and os.path.exists(network_path)

        network = load_network(network_path)
        result = load_result(result_path, network=network)
        assert result.used_darcy and result.used_lattice_boltzmann and not result.used_navier_stokes
        assert result.tortuosity >= 1.0
        assert result.corrected_darcy_permeability == \
            result.darcy_permeability / (result.tortuosity * result.tortuosity)

        # Re-run from the saved network file
        proc = run(["main.py", "--network", network_path, "--axis", "z", "--inertial", "--quiet"])
        assert proc.returncode == 0, proc.stdout + proc.stderr
        assert "Navier-Stokes" in proc.stdout

        proc = run(["open_results.py", result_path, "--network", network_path])
        assert proc.returncode == 0, proc.stdout + proc.stderr
        assert "Lattice-Boltzmann" in proc.stdout


def test_cli_errors():
    with tempfile.TemporaryDirectory() as tmp:
        junk = os.path.join(tmp, "junk.dat")
        with open(junk, 'wb') as f:
            f.write(b"\x00" * 16)

        proc = run(["main.py", "--network", junk])
        print(proc.stdout)
        assert proc.returncode == 1
        assert "Error" in proc.stdout

        # Invalid fluid parameters
        proc = run(["main.py", "--generate", "3", "3", "3", "--viscosity", "0"])
        assert proc.returncode == 1


if __name__ == "__main__":
    test_cli_pipeline()
    test_cli_errors()

import sys
import json
import argparse
from pathlib import Path
from typing import Optional, List
import structlog

from . import config
from .circuits import CircuitArtifacts
from .data_models import MintPayload, Proof
from .exceptions import PoepPipelineError
from .feature_extraction import extract
from .fingerprint import hash_fingerprint
from .logging_setup import configure_logging
from .pipeline import ProofOfUniquenessPipeline
from .zk_verifier import Groth16Verifier

# Initialize structured logger
logger = structlog.get_logger(__name__)


class PoepCLI:
    """Developer command-line harness for the PoEP pipeline."""

    def __init__(self) -> None:
        self.parser = self._create_argument_parser()

    def _create_argument_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            prog="poep",
            description="PoEP - proof-of-uniqueness pipeline developer harness",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        subparsers = parser.add_subparsers(dest="command", required=True)

        face_hash_parser = subparsers.add_parser(
            "face-hash", help="Print the face hash of an image as a decimal field element."
        )
        face_hash_parser.add_argument("image", type=Path, help="Path to an encoded image.")

        prove_parser = subparsers.add_parser(
            "prove", help="Generate a proof for an image and print the mint payload JSON."
        )
        prove_parser.add_argument("image", type=Path, help="Path to an encoded image.")
        prove_parser.add_argument(
            "--address",
            default=None,
            help="Wallet address used to derive the anchor input.",
        )
        prove_parser.add_argument(
            "--no-verify",
            action="store_true",
            help="Skip local verification of the generated proof.",
        )

        verify_parser = subparsers.add_parser(
            "verify", help="Verify a proof JSON file against the configured verification key."
        )
        verify_parser.add_argument(
            "proof",
            type=Path,
            help="Mint payload JSON, or snarkjs proof JSON with a 'publicSignals' list.",
        )

        return parser

    def _read_image(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def _execute_face_hash(self, args: argparse.Namespace) -> int:
        features, landmarks = extract(self._read_image(args.image))
        print(hash_fingerprint(features, landmarks))
        return 0

    def _execute_prove(self, args: argparse.Namespace) -> int:
        pipeline = ProofOfUniquenessPipeline.from_config(verify_locally=not args.no_verify)
        result = pipeline.run(self._read_image(args.image), address=args.address)
        print(json.dumps(result.payload.to_dict(), indent=2))
        return 0

    def _load_proof(self, path: Path) -> Proof:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if "pA" in data:
            return MintPayload.from_dict(data).to_proof()

        return Proof.from_snarkjs(data, data.get("publicSignals", []))

    def _execute_verify(self, args: argparse.Namespace) -> int:
        artifacts = CircuitArtifacts(
            circuit_path=config.CIRCUIT_WASM_PATH,
            proving_key_path=config.PROVING_KEY_PATH,
            verification_key_path=config.VERIFICATION_KEY_PATH,
        )
        verifier = Groth16Verifier(
            artifacts.load_verification_key(), timeout=config.VERIFY_TIMEOUT_SECONDS
        )

        try:
            proof = self._load_proof(args.proof)
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.info("Proof file could not be parsed", error=str(e))
            print("invalid")
            return 1

        valid = verifier.verify(proof)
        print("valid" if valid else "invalid")
        return 0 if valid else 1

    def run_from_args(self, args_list: Optional[List[str]] = None) -> int:
        """Run the CLI with provided arguments."""
        args = self.parser.parse_args(args_list)
        configure_logging()

        commands = {
            "face-hash": self._execute_face_hash,
            "prove": self._execute_prove,
            "verify": self._execute_verify,
        }

        try:
            return commands[args.command](args)

        except PoepPipelineError as e:
            logger.error("Pipeline error", **e.to_dict())
            print(f"[{e.error_code}] {e.message}", file=sys.stderr)
            return 1
        except OSError as e:
            logger.error("File error", error=str(e))
            print(f"[ERROR] {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print("\nOperation cancelled by user.", file=sys.stderr)
            return 130


def main() -> int:
    """Main entry point for the CLI."""
    cli = PoepCLI()
    return cli.run_from_args()


if __name__ == "__main__":
    sys.exit(main())

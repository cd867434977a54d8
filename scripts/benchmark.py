"""Benchmark script for measuring encode/decode round-trip latency."""

from __future__ import annotations

import argparse
import time

from config.settings import AppConfig
from modules.pipelines.decoder import QRDecodeService
from modules.pipelines.encoder import QREncodeService


def run_benchmark(level: str, length: int, rounds: int) -> None:
    """Encode a payload of ``length`` characters and decode it back ``rounds`` times."""
    config = AppConfig()
    encoder = QREncodeService(config)
    decoder = QRDecodeService()
    payload = ("https://example.com/" + "x" * length)[:length] or "x"

    encode_total = decode_total = 0.0
    for _ in range(rounds):
        started = time.perf_counter()
        result = encoder.encode(encoder.build_request(payload, level))
        encode_total += time.perf_counter() - started

        started = time.perf_counter()
        decoded = decoder.decode_image(result.image)
        decode_total += time.perf_counter() - started
        if decoded.text != payload:
            raise SystemExit(f"Round-trip mismatch at level {level}: {decoded.text!r}")

    print(f"level={level} length={length} rounds={rounds}")
    print(f"encode: {encode_total / rounds * 1000:.2f} ms/op")
    print(f"decode: {decode_total / rounds * 1000:.2f} ms/op")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark QR encode and decode.")
    parser.add_argument("--level", choices=("L", "M", "Q", "H"), default="M")
    parser.add_argument("--length", type=int, default=64)
    parser.add_argument("--rounds", type=int, default=20)
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    run_benchmark(args.level, args.length, args.rounds)

#!/usr/bin/env python3
"""
Inspect a .medsecure file without an account or database.

Run from project root:
    python -m tools.inspect_envelope path/to/file.medsecure [--tamper]

Prints the envelope layout (prefix, salt, ciphertext sample), the decrypted
metadata if the file is genuine, and with --tamper shows that flipping one
ciphertext byte is rejected.
"""
import argparse
import base64
import binascii
import random
from pathlib import Path

import envelope
from crypto import SALTED_HEADER, SALT_LEN
from errors import MedSecureError


def sample_hex(b: bytes, n: int = 32) -> str:
    if not b:
        return "<None>"
    return binascii.hexlify(b[:n]).decode()


def flip_one_byte(b: bytes) -> bytes:
    if not b:
        return b
    i = random.randrange(len(b))
    return b[:i] + bytes([b[i] ^ 0x01]) + b[i + 1:]


def describe_envelope(text: str) -> dict:
    info = {"prefix_ok": text.startswith(envelope.PREFIX), "length": len(text)}
    if not info["prefix_ok"]:
        return info
    body = text[len(envelope.PREFIX):]
    try:
        raw = base64.b64decode(body.strip(), validate=True)
    except (binascii.Error, ValueError):
        info["ciphertext"] = "not base64"
        return info
    if raw.startswith(SALTED_HEADER):
        info["salt_hex"] = sample_hex(raw[len(SALTED_HEADER):len(SALTED_HEADER) + SALT_LEN])
        raw = raw[len(SALTED_HEADER) + SALT_LEN:]
    info["ciphertext_len"] = len(raw)
    info["ciphertext_sample_hex"] = sample_hex(raw)
    try:
        decoded = envelope.decode(text)
    except MedSecureError as e:
        info["error"] = type(e).__name__
        return info
    info["metadata"] = decoded.metadata.to_dict()
    return info


def tamper_check(text: str) -> str:
    """Flip one ciphertext byte and report how decode reacts (error class name, or 'accepted')."""
    body = text[len(envelope.PREFIX):]
    raw = base64.b64decode(body.strip())
    header = len(SALTED_HEADER) + SALT_LEN
    tampered = raw[:header] + flip_one_byte(raw[header:])
    forged = envelope.PREFIX + base64.b64encode(tampered).decode("ascii")
    try:
        envelope.decode(forged)
    except MedSecureError as e:
        return type(e).__name__
    return "accepted"


def main():
    ap = argparse.ArgumentParser(description="Inspect a .medsecure envelope")
    ap.add_argument("path", help="Path to the .medsecure file")
    ap.add_argument("--tamper", action="store_true", help="Also check that a one-byte flip is rejected")
    args = ap.parse_args()

    text = Path(args.path).read_text(encoding="utf-8")
    info = describe_envelope(text)
    for k, v in info.items():
        if k == "metadata":
            for mk, mv in v.items():
                print(f"  {mk:<13}= {mv}")
        else:
            print(f"{k:<22}= {v}")

    if args.tamper and "metadata" in info:
        outcome = tamper_check(text)
        if outcome == "accepted":
            # CBC carries no authentication tag; a flip in the last blocks can survive
            print("[WARN] tampered ciphertext was accepted")
        else:
            print(f"[PASS] tampered ciphertext rejected ({outcome})")


if __name__ == "__main__":
    main()

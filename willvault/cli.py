#!/usr/bin/env python3
"""
WillVault Command Line Interface

Usage:
    willvault keygen --output <prefix>
    willvault encrypt --input <file> --public-key <pem> --output <file> --wrapped-key <file>
    willvault decrypt --input <file> --wrapped-key <file> --private-key <pem> --output <file>
    willvault publish --file <pdf> --owner <id> --beneficiary <id> [--beneficiary <id> ...]
    willvault claim --claimant <id> --owner <id> --certificate <file> --output <file>
    willvault roles --identity <id>
    willvault serve [--host 127.0.0.1] [--port 8484]
"""

import argparse
import asyncio
import json
import os
import sys

from .config import LEDGER_URL, STORE_URL


def read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def write_bytes(path: str, data: bytes, private: bool = False):
    """Write a file; private files are created readable by the owner only."""
    mode = 0o600 if private else 0o644
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        f.write(data)


def _clients(args):
    from .ledger import HttpAccessLedger
    from .store import HttpDurableStore

    return HttpDurableStore(args.store_url), HttpAccessLedger(args.ledger_url)


def cmd_keygen(args):
    """Generate an RSA key pair for offline encryption."""
    from .keys import KeyPairService

    key_pair = KeyPairService(key_size=args.bits).generate()
    write_bytes(f"{args.output}.pub.pem", key_pair.public_key)
    write_bytes(f"{args.output}.key.pem", key_pair.private_key, private=True)
    print(f"Public key:  {args.output}.pub.pem")
    print(f"Private key: {args.output}.key.pem")
    print(f"Fingerprint: {key_pair.fingerprint}", file=sys.stderr)
    return 0


def cmd_encrypt(args):
    """Encrypt a document locally under a public key."""
    from .cipher import HybridCipher

    result = HybridCipher().encrypt(read_bytes(args.input), read_bytes(args.public_key))
    write_bytes(args.output, result.payload.to_bytes())
    write_bytes(args.wrapped_key, result.wrapped_key)
    print(f"Payload:     {args.output} ({len(result.payload)} bytes)")
    print(f"Wrapped key: {args.wrapped_key}")
    return 0


def cmd_decrypt(args):
    """Decrypt a payload locally with a private key."""
    from .cipher import HybridCipher

    plaintext = HybridCipher().decrypt(
        read_bytes(args.input), read_bytes(args.wrapped_key), read_bytes(args.private_key)
    )
    write_bytes(args.output, plaintext, private=True)
    print(f"Document saved to: {args.output} ({len(plaintext)} bytes)")
    return 0


def cmd_publish(args):
    """Encrypt and publish a will to a node."""
    from .custody import WillCustodian

    store, ledger = _clients(args)
    receipt = asyncio.run(WillCustodian(store, ledger).publish_will(
        read_bytes(args.file),
        owner=args.owner,
        beneficiaries=args.beneficiary,
        power_of_attorney=args.power_of_attorney,
        content_type=args.content_type,
    ))
    print(json.dumps(receipt.to_dict(), indent=2))
    return 0


def cmd_claim(args):
    """Submit a claim and save the released document."""
    from .record import AccessClaim
    from .retrieval import RetrievalProtocol, RetrievedDocument
    from .retry import RetryPolicy

    store, ledger = _clients(args)

    async def run():
        locator = args.certificate_locator
        if locator is None:
            locator = await RetryPolicy().execute(
                lambda: store.put(read_bytes(args.certificate), "application/pdf"),
                operation="store.put",
            )
        claim = AccessClaim(
            claimant=args.claimant,
            will_owner=args.owner,
            certificate_locator=locator,
            record_id=args.record_id,
        )
        return await RetrievalProtocol(store, ledger).request_access(claim)

    result = asyncio.run(run())
    if isinstance(result, RetrievedDocument):
        write_bytes(args.output, result.content, private=True)
        print(f"✓ AUTHORIZED: {result.record_id}")
        print(f"Document saved to: {args.output} ({len(result)} bytes)")
        return 0

    print(f"✗ DENIED: {result.reason.value}", file=sys.stderr)
    if result.detail:
        print(f"  {result.detail}", file=sys.stderr)
    return 1


def cmd_roles(args):
    """List wills on which an identity holds a role, and wills it owns."""
    from .custody import WillCustodian

    store, ledger = _clients(args)
    custodian = WillCustodian(store, ledger)

    async def run():
        summary = await custodian.my_roles(args.identity)
        owned = await custodian.my_wills(args.identity)
        return summary, owned

    summary, owned = asyncio.run(run())
    out = summary.to_dict()
    out["owner_of"] = [r.to_dict() for r in owned]
    print(json.dumps(out, indent=2))
    return 0


def cmd_serve(args):
    """Run the reference node."""
    import uvicorn
    from .config import validate_config

    failed = [name for name, ok in validate_config().items() if not ok]
    if failed:
        print(f"✗ Configuration checks failed: {', '.join(failed)}", file=sys.stderr)
        return 1

    uvicorn.run(
        "willvault.service.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=(args.log_level or "info").lower(),
    )
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="WillVault CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  willvault serve
  willvault publish -f will.pdf --owner alice@example.com -b bob@example.com
  willvault claim --claimant bob@example.com --owner alice@example.com -c death.pdf -o will.pdf
  willvault roles --identity bob@example.com
  willvault keygen -o owner
        """
    )
    parser.add_argument("--log-level", help="Enable logging at this level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_node_args(p):
        p.add_argument("--store-url", default=STORE_URL, help="Durable store base URL")
        p.add_argument("--ledger-url", default=LEDGER_URL, help="Access ledger base URL")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate RSA key pair")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output path prefix")
    keygen_parser.add_argument("--bits", type=int, default=2048, help="RSA key size")

    # encrypt
    enc_parser = subparsers.add_parser("encrypt", help="Encrypt a document locally")
    enc_parser.add_argument("-i", "--input", required=True, help="Document file")
    enc_parser.add_argument("-k", "--public-key", required=True, help="PEM public key")
    enc_parser.add_argument("-o", "--output", required=True, help="Payload output file")
    enc_parser.add_argument("-w", "--wrapped-key", required=True, help="Wrapped key output file")

    # decrypt
    dec_parser = subparsers.add_parser("decrypt", help="Decrypt a payload locally")
    dec_parser.add_argument("-i", "--input", required=True, help="Payload file")
    dec_parser.add_argument("-w", "--wrapped-key", required=True, help="Wrapped key file")
    dec_parser.add_argument("-k", "--private-key", required=True, help="PEM private key")
    dec_parser.add_argument("-o", "--output", required=True, help="Document output file")

    # publish
    pub_parser = subparsers.add_parser("publish", help="Encrypt and publish a will")
    pub_parser.add_argument("-f", "--file", required=True, help="Will document")
    pub_parser.add_argument("--owner", required=True, help="Owner identity")
    pub_parser.add_argument("-b", "--beneficiary", action="append", required=True,
                            help="Beneficiary identity (repeatable)")
    pub_parser.add_argument("-p", "--power-of-attorney", help="Power of attorney identity")
    pub_parser.add_argument("--content-type", default="application/pdf", help="Document content type")
    add_node_args(pub_parser)

    # claim
    claim_parser = subparsers.add_parser("claim", help="Claim a will")
    claim_parser.add_argument("--claimant", required=True, help="Claimant identity")
    claim_parser.add_argument("--owner", required=True, help="Will owner identity")
    cert = claim_parser.add_mutually_exclusive_group(required=True)
    cert.add_argument("-c", "--certificate", help="Death certificate file to upload")
    cert.add_argument("--certificate-locator", help="Locator of an already stored certificate")
    claim_parser.add_argument("-r", "--record-id", help="Specific will record")
    claim_parser.add_argument("-o", "--output", required=True, help="Document output file")
    add_node_args(claim_parser)

    # roles
    roles_parser = subparsers.add_parser("roles", help="List roles for an identity")
    roles_parser.add_argument("--identity", required=True, help="Identity to look up")
    add_node_args(roles_parser)

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the reference node")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8484, help="Bind port")

    args = parser.parse_args(argv)

    from .errors import WillVaultError
    from .logging_config import configure_logging

    if args.log_level or args.json_logs:
        configure_logging(level=args.log_level or "INFO", json_format=args.json_logs)

    commands = {
        "keygen": cmd_keygen,
        "encrypt": cmd_encrypt,
        "decrypt": cmd_decrypt,
        "publish": cmd_publish,
        "claim": cmd_claim,
        "roles": cmd_roles,
        "serve": cmd_serve,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except (WillVaultError, OSError) as e:
        print(f"✗ {type(e).__name__}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

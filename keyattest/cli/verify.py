"""
keyattest.cli.verify
====================

Verify an Android key attestation chain and print the verdict.

Chain files may be PEM bundles (any number of CERTIFICATE blocks) or single
DER certificates; they are concatenated in argument order, leaf first.

By default prints a human report; use --json for machine-readable output.
Exit status: 0 accepted, 1 rejected, 2 usage or input error.

Examples:
  keyattest verify chain.pem --at 1700000000
  keyattest verify leaf.der inter.der root.der --roots vendor.pem --no-builtin-roots
  keyattest verify chain.pem --at 1700000000 --config keyattest.toml --json
"""

from __future__ import annotations

import json
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import config as kconfig
from .. import logging as klog
from ..anchors import TrustAnchorSet
from ..errors import AttestationError
from ..key_description import decode_key_description
from ..policy import Policy
from ..types import KeyAttestationRecord, VerificationVerdict
from ..verify import verify_attestation
from ..version import runtime_banner
from ..x509 import parse_certificate, pem_to_der, require_attestation_extension

_PEM_MARKER = b"-----BEGIN CERTIFICATE-----"


def _die(msg: str, code: int = 2) -> None:
    sys.stderr.write(msg.rstrip() + "\n")
    raise typer.Exit(code)


def _read_chain(paths: List[Path]) -> List[bytes]:
    chain: List[bytes] = []
    for p in paths:
        data = p.read_bytes()
        if _PEM_MARKER in data:
            certs = pem_to_der(data.decode("ascii", errors="replace"))
            if not certs:
                raise ValueError(f"{p}: no CERTIFICATE blocks found")
            chain.extend(certs)
        else:
            chain.append(data)
    return chain


def _setup_logging(cfg: kconfig.EngineConfig, verbose: bool) -> None:
    # Keep stdout clean for --json; verdict lines only with -v.
    klog.configure(
        json=None if cfg.log.format == "auto" else cfg.log.format == "json",
        level=cfg.log.level if verbose else "WARNING",
        file_path=cfg.log.file,
    )


def _record_table(record: KeyAttestationRecord) -> Table:
    t = Table(title="Attestation record", box=box.SIMPLE)
    t.add_column("Field")
    t.add_column("Value", justify="right")
    for k, v in record.to_dict().items():
        if isinstance(v, dict):
            for sk, sv in v.items():
                t.add_row(f"{k}.{sk}", str(sv))
        else:
            t.add_row(k, "-" if v is None else str(v))
    return t


def _human_report(console: Console, verdict: VerificationVerdict) -> None:
    meta = Table.grid(padding=(0, 2))
    meta.add_row("Result", "[green]ACCEPTED[/green]" if verdict else "[red]REJECTED[/red]")
    meta.add_row("Reason", verdict.reason)
    meta.add_row("Reference time", str(verdict.reference_time))
    if verdict.anchor is not None:
        meta.add_row("Anchor", verdict.anchor.name)
    if verdict.error is not None:
        meta.add_row("Detail", verdict.error.msg)
        for k, v in verdict.error.ctx.items():
            meta.add_row(f"  {k}", str(v))
    console.print(Panel(meta, title="Key attestation", expand=False))

    if verdict.certificates:
        c = Table(title="Chain (leaf first)", box=box.SIMPLE)
        c.add_column("#", justify="right")
        c.add_column("Subject")
        c.add_column("SHA-256")
        for i, cert in enumerate(verdict.certificates):
            c.add_row(str(i), str(cert.subject), cert.fingerprint.hex()[:16])
        console.print(c)
    if verdict.record is not None:
        console.print(_record_table(verdict.record))


def build_app() -> typer.Typer:
    app = typer.Typer(
        name="keyattest",
        help="Verify Android hardware key attestation chains offline",
        no_args_is_help=True,
        add_completion=False,
    )

    @app.callback(invoke_without_command=True)
    def _meta(
        ctx: typer.Context,
        version: bool = typer.Option(
            False, "--version", "-V", help="Print version and exit", is_eager=True
        ),
    ) -> None:
        if version:
            typer.echo(runtime_banner())
            raise typer.Exit(0)
        if ctx.invoked_subcommand is None:
            typer.echo(ctx.get_help())

    @app.command("verify")
    def verify_cmd(
        chain_files: List[Path] = typer.Argument(..., help="PEM bundle(s) or DER certificates, leaf first"),
        at: Optional[int] = typer.Option(
            None, "--at", help="Reference time (Unix seconds); defaults to now"
        ),
        roots: List[Path] = typer.Option([], "--roots", help="Additional PEM bundle of trusted roots"),
        builtin_roots: Optional[bool] = typer.Option(
            None, "--builtin-roots/--no-builtin-roots", help="Trust the bundled Google roots"
        ),
        config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML or JSON config file"),
        challenge: Optional[str] = typer.Option(None, "--challenge", help="Required challenge (hex)"),
        permissive: bool = typer.Option(
            False, "--permissive", help="Accept any security level and boot state"
        ),
        json_out: bool = typer.Option(False, "--json", help="Print machine-readable JSON result"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Log verification steps to stderr"),
    ) -> None:
        """
        Verify one attestation chain.
        """
        overrides: Dict[str, Any] = {}
        anchors_over: Dict[str, Any] = {}
        if builtin_roots is not None:
            anchors_over["include_builtin"] = builtin_roots
        if anchors_over:
            overrides["anchors"] = anchors_over
        try:
            cfg = kconfig.load(config_file, **overrides)
        except (OSError, ValueError, KeyError, TypeError) as e:
            _die(f"[config] {e}")
            return
        _setup_logging(cfg, verbose)

        try:
            chain = _read_chain(chain_files)
            anchors = cfg.build_anchors()
            if roots:
                anchors = anchors.union(TrustAnchorSet.from_pem_files(roots))
        except (OSError, ValueError, AttestationError) as e:
            _die(f"[input] {e}")
            return
        if len(anchors) == 0:
            _die("[input] no trust anchors configured (use --roots or --builtin-roots)")
            return

        policy = cfg.build_policy()
        if permissive:
            policy = Policy.permissive()
        if challenge is not None:
            try:
                policy = replace(policy, required_challenge=bytes.fromhex(challenge))
            except ValueError:
                _die("[input] --challenge must be hex")
                return

        reference_time = at if at is not None else int(time.time())
        with klog.trace_scope():
            verdict = verify_attestation(chain, anchors, reference_time, policy, limits=cfg.chain_limits())

        if json_out:
            print(json.dumps(verdict.to_dict(), indent=2, sort_keys=True))
        else:
            _human_report(Console(), verdict)
        if not verdict:
            raise typer.Exit(1)

    @app.command("decode")
    def decode_cmd(
        cert_file: Path = typer.Argument(..., help="Leaf certificate (PEM or DER)"),
        json_out: bool = typer.Option(False, "--json", help="Print machine-readable JSON"),
    ) -> None:
        """
        Decode the attestation extension of a certificate. No signature,
        validity or trust checks are made.
        """
        try:
            raw = _read_chain([cert_file])[0]
            leaf = parse_certificate(raw)
            record = decode_key_description(require_attestation_extension(leaf).value)
        except (OSError, ValueError) as e:
            _die(f"[input] {e}")
            return
        except AttestationError as e:
            if json_out:
                print(json.dumps({"ok": False, "error": e.to_dict()}, sort_keys=True))
                raise typer.Exit(1)
            _die(f"[decode] {cert_file}: {e}", 1)
            return

        if json_out:
            print(json.dumps({"ok": True, "record": record.to_dict()}, indent=2, sort_keys=True))
            return
        Console().print(_record_table(record))

    return app


def main(argv: Optional[List[str]] = None) -> int:
    app = build_app()
    app(args=argv)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

"""
Command-line interface for dnsmasq-doctor.

  1) Read settings from the environment, then let flags override them
  2) Validate + normalize targets (interfaces for the server role, DNS servers for the client role)
  3) Build the role's registry and an immutable Context
  4) Run the executor, derive recommendations, render to the sinks

Exit codes: 0 no Error outcomes, 1 at least one Error outcome, 2 setup fault.
"""

import argparse
import json
import logging
import sys
from typing import IO, List, Mapping, Optional

from rich.console import Console

from collaborators import Collaborators
from diagnostics.errors import CollaboratorUnavailable, ConfigNotFound, RegistrationError
from diagnostics.executor import Executor
from diagnostics.models import Context, Role
from probes import registry_for
from reporting.recommendations import Recommendations
from reporting.reporter import Reporter
from reporting.sinks import ConsoleSink, FileSink, StreamSink
from reporting.targets import InvalidTarget, require_address, require_domains, require_targets

from .logs import configure_logging
from .settings import Settings, SettingsError

logger = logging.getLogger(__name__)

SETUP_FAULT = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="dnsmasq-doctor", description="Diagnose a dnsmasq server or a DNS client host")
    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("run", help="Run the diagnostic probes for a role")
    r.add_argument("--role", choices=[x.value for x in Role], default=Role.SERVER.value)
    r.add_argument("--target", action="append", default=[],
                   help="Interface (server role) or DNS server address (client role); repeatable")
    r.add_argument("--dns-server", help="DNS server to use for resolution checks (client role)")
    r.add_argument("--domain", action="append", default=[],
                   help="Domain to resolve in the resolution checks; repeatable (default: google.com, cloudflare.com, github.com)")
    r.add_argument("--list", action="store_true", help="Print the probe plan and exit")
    r.add_argument("--format", choices=["text", "json"], default="text")
    r.add_argument("--timeout", type=float, help="Global deadline in seconds (default: DIAG_TIMEOUT)")
    r.add_argument("--concurrency", type=int, help="Worker pool size (default: DIAG_CONCURRENCY)")
    r.add_argument("--no-log-file", action="store_true", help="Do not write the report log file")
    r.add_argument("--allow-unprivileged", action="store_true",
                   help="Run server checks without root privileges")

    sub.add_parser("interfaces", help="List network interfaces with IPv4 addresses")
    return p.parse_args(argv)


def _fail(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return SETUP_FAULT


def default_targets(role: Role, env: Collaborators, dns_server: Optional[str]) -> List[str]:
    """Server: every non-loopback interface with IPv4. Client: resolv.conf nameservers."""
    try:
        if role is Role.SERVER:
            return [i.name for i in env.network.list_interfaces() if i.ipv4 and i.name != "lo"]
        if dns_server:
            return [dns_server]
        return list(env.config.load_resolv_conf().nameservers)
    except (CollaboratorUnavailable, ConfigNotFound) as e:
        logger.warning("could not discover default targets: %s", e)
        return []


def build_context(args: argparse.Namespace, settings: Settings, env: Collaborators) -> Context:
    role = Role(args.role)
    targets = require_targets(role, args.target)
    dns_server = require_address(args.dns_server) if args.dns_server else None
    if not targets:
        targets = default_targets(role, env, dns_server)
    domains = require_domains(args.domain)
    extra = {"domains": tuple(domains), "test_domain": domains[0]} if domains else {}
    return Context(
        role=role,
        targets=tuple(targets),
        dns_server=dns_server,
        privileged=env.system.is_privileged(),
        service=settings.service,
        config_file=settings.config_file,
        config_dir=settings.config_dir,
        env=env,
        **extra,
    )


def print_plan(executor: Executor, registry, context: Context, fmt: str, out: IO[str]) -> None:
    plan = executor.plan(registry, context)
    if fmt == "json":
        out.write(json.dumps([p.describe() for p in plan], indent=2) + "\n")
        return
    for p in plan:
        deps = f"  (after {', '.join(p.depends_on)})" if p.depends_on else ""
        out.write(f"{p.id:<36} {p.category.value:<12} {p.name}{deps}\n")


def cmd_run(args: argparse.Namespace, settings: Settings, env: Collaborators, out: IO[str]) -> int:
    try:
        registry = registry_for(args.role)
    except RegistrationError as e:
        return _fail(str(e))

    try:
        context = build_context(args, settings, env)
    except InvalidTarget as e:
        return _fail(f"Invalid input: {e}")

    if args.timeout is not None and args.timeout <= 0:
        return _fail(f"--timeout must be positive, got {args.timeout:g}")
    if args.concurrency is not None and args.concurrency < 1:
        return _fail(f"--concurrency must be >= 1, got {args.concurrency}")

    executor = Executor(
        concurrency_limit=settings.concurrency if args.concurrency is None else args.concurrency,
        global_deadline=settings.timeout if args.timeout is None else args.timeout,
    )

    if args.list:
        print_plan(executor, registry, context, args.format, out)
        return 0

    if context.role is Role.SERVER and not context.privileged and not args.allow_unprivileged:
        return _fail("server diagnostics need root privileges (use sudo, or --allow-unprivileged)")

    report = executor.run(registry, context)
    recommendations = Recommendations.derive(report)

    if args.format == "json":
        sinks = [StreamSink(out, format="json")]
    else:
        sinks = [ConsoleSink(Console(file=out, highlight=False))]
    file_sink = None
    if not args.no_log_file:
        file_sink = FileSink(settings.log_dir, context.role.value, format="text", when=report.started_at)
        sinks.append(file_sink)

    failed = Reporter(skipped_is_failure=settings.skipped_is_failure).render(report, recommendations, sinks)
    if file_sink is not None and file_sink not in failed:
        print(f"Full log saved to: {file_sink.path}", file=sys.stderr)

    return report.exit_code(skipped_is_failure=settings.skipped_is_failure)


def cmd_interfaces(env: Collaborators, out: IO[str]) -> int:
    try:
        interfaces = env.network.list_interfaces()
    except CollaboratorUnavailable as e:
        return _fail(str(e))
    for i in interfaces:
        if i.ipv4:
            out.write(f"{i.name:<16} {', '.join(i.ipv4):<32} mtu {i.mtu if i.mtu is not None else '?'} {i.state}\n")
    return 0


def main(
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    env: Optional[Collaborators] = None,
    out: Optional[IO[str]] = None,
) -> int:
    """
    CLI entrypoint.

    Returns:
        Process exit code.
    """
    args = parse_args(argv)
    out = out if out is not None else sys.stdout

    try:
        settings = Settings.from_env(environ)
    except SettingsError as e:
        return _fail(str(e))
    configure_logging(settings.log_level)

    env = env or Collaborators.local()
    if args.command == "interfaces":
        return cmd_interfaces(env, out)
    return cmd_run(args, settings, env, out)


if __name__ == "__main__":
    raise SystemExit(main())

"""
Relay admin CLI.

Operator commands that talk straight to the database and Redis:
tenants, channel bindings, manual balance moves, ledger audits, tokens
and stream maintenance.
"""

import asyncio
import sys
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import typer

from messaging_engine.auth import AuthContext, UserRole
from messaging_engine.cli.output import (
    print_error,
    print_header,
    print_info,
    print_success,
    print_table,
    print_warning,
)
from messaging_engine.errors import MessagingError
from messaging_engine.ledger.store import LedgerStore
from messaging_engine.persistence.models import Platform, TenantStatus
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.service.automation import AutomationRuleService
from messaging_engine.service.enforcement import CreditEnforcementService
from messaging_engine.streams.producer import StreamProducer
from relaycore.db import get_sessionmaker
from relaycore.logging import setup_logging
from relaycore.redis import get_redis_client
from relaycore.security import create_access_token, encrypt_secret
from relaycore.timeutil import utcnow

app = typer.Typer(help="Relaydesk administration")


def _session():
    return get_sessionmaker()()


def _fail(e: MessagingError) -> None:
    print_error(f"{e.code}: {e.message}")
    sys.exit(1)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level")) -> None:
    setup_logging(level="DEBUG" if verbose else "WARNING")


@app.command("create-tenant")
def create_tenant(
    name: str = typer.Argument(..., help="Tenant display name"),
    plan: Optional[str] = typer.Option(None, "--plan", help="Plan code (e.g. STARTER)"),
    status: TenantStatus = typer.Option(TenantStatus.ACTIVE, "--status", help="Initial status"),
    seed_rules: bool = typer.Option(True, "--seed-rules/--no-seed-rules", help="Create the default auto-reply rules"),
) -> None:
    """Create a tenant with a zero balance."""
    with _session() as db:
        tenant = MessagingRepository(db).create_tenant(name, status=status, plan=plan)
        db.commit()

        rules = []
        if seed_rules:
            rules = AutomationRuleService(db).seed_defaults(AuthContext.system(tenant.id))

        print_success(f"Created tenant {tenant.name}")
        print_info(f"id: {tenant.id}")
        if rules:
            print_info(f"seeded {len(rules)} automation rules")


@app.command("bind-channel")
def bind_channel(
    tenant_id: UUID = typer.Argument(..., help="Tenant that owns the channel"),
    external_id: str = typer.Argument(..., help="WhatsApp phone_number_id or Messenger page id"),
    platform: Platform = typer.Option(Platform.WHATSAPP, "--platform", "-p"),
    provider: str = typer.Option("meta", "--provider", help="meta or stub"),
    token: Optional[str] = typer.Option(None, "--token", "-t", help="Provider access token"),
    display: str = typer.Option("", "--display", "-d", help="Display number or page name"),
) -> None:
    """Route a provider channel to a tenant."""
    if provider not in ("meta", "stub"):
        print_error(f"Unknown provider: {provider}")
        sys.exit(1)
    if provider == "meta" and not token:
        print_error("Meta channels need --token")
        sys.exit(1)

    with _session() as db:
        repo = MessagingRepository(db)
        if repo.get_tenant(tenant_id) is None:
            print_error(f"Tenant {tenant_id} not found")
            sys.exit(1)

        existing = repo.get_binding_by_external_id(platform, external_id)
        if existing is not None:
            print_error(f"{platform.value} channel {external_id} is already bound to tenant {existing.tenant_id}")
            sys.exit(1)

        binding = repo.create_binding(
            tenant_id=tenant_id,
            platform=platform,
            external_id=external_id,
            display_identifier=display,
            provider=provider,
            access_token_encrypted=encrypt_secret(token) if token else None,
        )
        db.commit()
        print_success(f"Bound {platform.value} channel {external_id} (binding {binding.id})")


@app.command("adjust-balance")
def adjust_balance(
    tenant_id: UUID = typer.Argument(...),
    amount: str = typer.Argument(..., help="Signed amount, e.g. 500 or -25.50"),
    actor: UUID = typer.Option(..., "--actor", help="Admin user id recorded on the entry"),
    reason: str = typer.Option("", "--reason", "-r"),
) -> None:
    """Credit or debit a tenant by hand."""
    try:
        value = Decimal(amount)
    except InvalidOperation:
        print_error(f"Not a number: {amount}")
        sys.exit(1)

    ctx = AuthContext(tenant_id=tenant_id, user_id=actor, role=UserRole.SUPER_ADMIN)
    with _session() as db:
        service = CreditEnforcementService(db)
        try:
            entry = asyncio.run(service.adjust_balance(ctx, tenant_id, value, reason))
        except MessagingError as e:
            _fail(e)

        print_success(f"{entry.kind} {entry.amount} recorded (entry {entry.id})")
        print_info(f"balance: {service.ledger.current_balance(tenant_id)}")


@app.command("ledger")
def ledger(
    tenant_id: UUID = typer.Argument(...),
    limit: int = typer.Option(20, "--limit", "-n"),
) -> None:
    """Show a tenant's most recent ledger entries."""
    with _session() as db:
        entries = MessagingRepository(db).list_ledger_entries(tenant_id, limit=limit)
        try:
            balance = LedgerStore(db).current_balance(tenant_id)
        except MessagingError as e:
            _fail(e)

    print_table(
        f"Ledger {tenant_id} (balance {balance})",
        ["When", "Kind", "Amount", "Description"],
        [[e.created_at.isoformat(timespec="seconds"), e.kind, str(e.amount), e.description] for e in entries],
    )


@app.command("ledger-audit")
def ledger_audit(
    tenant_id: Optional[UUID] = typer.Argument(None, help="Audit one tenant instead of all"),
) -> None:
    """Check that each cached balance equals the sum of its ledger."""
    with _session() as db:
        store = LedgerStore(db)
        tenant_ids = [tenant_id] if tenant_id else [t.id for t in MessagingRepository(db).list_tenants(limit=10000)]
        try:
            audits = [store.reconcile(tid) for tid in tenant_ids]
        except MessagingError as e:
            _fail(e)

    print_table(
        "Ledger audit",
        ["Tenant", "Balance", "Ledger sum", "Entries", "OK"],
        [
            [str(a.tenant_id), str(a.balance), str(a.ledger_sum), str(a.entry_count), "yes" if a.consistent else "NO"]
            for a in audits
        ],
    )

    broken = [a for a in audits if not a.consistent]
    if broken:
        print_error(f"{len(broken)} tenant(s) out of balance")
        sys.exit(1)
    print_success("All balances match their ledgers")


@app.command("issue-token")
def issue_token(
    tenant_id: UUID = typer.Argument(...),
    user_id: UUID = typer.Argument(...),
    role: UserRole = typer.Option(UserRole.USER, "--role"),
    expires_minutes: Optional[int] = typer.Option(None, "--expires-minutes"),
) -> None:
    """Print a bearer token for API and WebSocket access."""
    ctx = AuthContext(tenant_id=tenant_id, user_id=user_id, role=role)
    expires = timedelta(minutes=expires_minutes) if expires_minutes else None
    print(create_access_token(ctx.to_claims(), expires))


@app.command("expire-ambiguous")
def expire_ambiguous(
    older_than_minutes: Optional[int] = typer.Option(
        None, "--older-than-minutes", help="Defaults to AMBIGUOUS_HOLD_MINUTES"
    ),
) -> None:
    """Fail and refund held dispatches whose outcome never arrived."""
    cutoff = utcnow() - timedelta(minutes=older_than_minutes) if older_than_minutes is not None else None
    with _session() as db:
        expired = asyncio.run(CreditEnforcementService(db).expire_ambiguous_dispatches(cutoff))

    if not expired:
        print_info("No ambiguous dispatches to expire")
        return
    print_warning(f"Expired and refunded {len(expired)} message(s)")
    for message in expired:
        print_info(f"  {message.id} ({message.cost})")


@app.command("replay-dlq")
def replay_dlq(count: int = typer.Option(100, "--count", "-n")) -> None:
    """Move dead-lettered entries back onto the inbound stream."""
    print_header("Replaying DLQ")
    replayed = StreamProducer(get_redis_client()).replay_dlq(count)
    print_success(f"Replayed {replayed} entr{'y' if replayed == 1 else 'ies'}")


if __name__ == "__main__":
    app()

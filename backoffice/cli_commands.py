"""
Flask CLI commands for ledger and stock maintenance.

Commands:
- flask init-db: Create all tables
- flask outbox-dispatch: Retry pending/failed ledger outbox entries
- flask verify-ledger: Replay entity accounts and kardex and report divergences
"""

import click
from backoffice import database
from backoffice.models import Entity, Product


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table of the back office schema."""
        database.create_all()
        click.echo(click.style('✅ Tablas creadas', fg='green'))

    @app.cli.command('outbox-dispatch')
    @click.option('--tenant-id', type=int, default=None, help='Only entries of this tenant')
    @click.option('--limit', type=int, default=None, help='Max entries to dispatch')
    def outbox_dispatch(tenant_id, limit):
        """Post pending and failed ledger outbox entries to the entity and cash accounts."""
        from backoffice.services.ledger_outbox_service import dispatch_pending

        result = dispatch_pending(database.db_session, tenant_id=tenant_id, limit=limit)
        click.echo(f"Despachadas: {result['dispatched']}")
        if result['failed']:
            click.echo(click.style(f"Fallidas: {result['failed']}", fg='red'))

    @app.cli.command('verify-ledger')
    @click.option('--tenant-id', type=int, required=True, help='Tenant to verify')
    def verify_ledger(tenant_id):
        """Replay every entity account and product kardex of a tenant."""
        from backoffice.services.entity_account_service import verify_entity_chain
        from backoffice.services.inventory_report_service import verify_kardex

        session = database.db_session
        problems = 0

        entities = session.query(Entity).filter(Entity.tenant_id == tenant_id).order_by(Entity.id).all()
        for entity in entities:
            mismatches = verify_entity_chain(session, tenant_id, entity.id)
            if mismatches:
                problems += 1
                click.echo(click.style(
                    f'❌ Cuenta de {entity.name} (id {entity.id}): movimientos con saldo incorrecto {mismatches}',
                    fg='red'
                ))

        products = session.query(Product).filter(Product.tenant_id == tenant_id).order_by(Product.id).all()
        for product in products:
            for divergence in verify_kardex(session, tenant_id, product.id):
                problems += 1
                click.echo(click.style(
                    f"❌ Kardex de {product.name} en almacén {divergence['warehouse_id']}: "
                    f"stock {divergence['stored_quantity']}, kardex {divergence['replayed_quantity']}",
                    fg='red'
                ))

        if problems:
            raise click.exceptions.Exit(1)
        click.echo(click.style(
            f'✅ {len(entities)} cuentas y {len(products)} productos verificados', fg='green'
        ))

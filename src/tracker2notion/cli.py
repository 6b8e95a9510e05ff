"""CLI for tracker2notion."""

import asyncio
import logging
import sys
from datetime import datetime
from functools import partial

import click

from tracker2notion import __version__
from tracker2notion.config import Settings, get_settings
from tracker2notion.exceptions import ArchiveFailedError, PushFailedError
from tracker2notion.models import FieldConfig, Record, UserSettings
from tracker2notion.notion.client import NotionClient
from tracker2notion.notion.properties import build_database_properties
from tracker2notion.notion.schema import DEFAULT_DATABASE_TITLE
from tracker2notion.notion.sync import fields_for
from tracker2notion.onboarding import build_page_tree, flatten_page_tree, page_path
from tracker2notion.orchestrator import SyncOrchestrator
from tracker2notion.registry import SchemaRegistry
from tracker2notion.store import LocalStore
from tracker2notion.templates import DEFAULT_TEMPLATE_ID, list_templates


class App:
    """Services wired from settings, shared by all commands."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.user_id = settings.user_id
        self.store = LocalStore(settings.store_path)
        self.registry = SchemaRegistry(self.store)
        self.client_factory = partial(
            NotionClient,
            notion_version=settings.notion_version,
            max_pages=settings.max_query_pages,
            page_size=settings.page_size,
        )
        self.orchestrator = SyncOrchestrator(
            self.store,
            settings.source_of_truth,
            client_factory=self.client_factory,
            registry=self.registry,
        )

    def user_settings(self) -> UserSettings:
        """User settings, seeded from the environment on first use."""
        current = self.store.get_user_settings(self.user_id)
        updates = {}
        if (current is None or not current.notion_api_key) and self.settings.notion_token:
            updates["notion_api_key"] = self.settings.notion_token
        if (current is None or not current.notion_database_id) and self.settings.database_id:
            updates["notion_database_id"] = self.settings.database_id
        if current is None or updates:
            return self.store.save_user_settings(self.user_id, **updates)
        return current


def _app(ctx: click.Context) -> App:
    app: App | None = ctx.obj.get("app")
    if app is None:
        click.echo(f"Error loading settings: {ctx.obj.get('settings_error')}", err=True)
        ctx.exit(1)
    return app


def _run(ctx: click.Context, coro) -> None:
    try:
        asyncio.run(coro)
    except click.exceptions.Exit:
        raise
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user")
        ctx.exit(130)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)


def _format_record(record: Record, fields: list[FieldConfig]) -> str:
    title_field = next((f for f in fields if f.value_kind == "title"), None)
    title = record.field_values.get(title_field.id) if title_field else None
    when = datetime.fromtimestamp(record.timestamp / 1000).strftime("%Y-%m-%d %H:%M")
    marker = "" if record.is_synced else "  [pending]"
    return f"{when}  {title or '(untitled)'}  ({record.id}){marker}"


def _parse_field_options(values: tuple[str, ...]) -> dict[str, str]:
    parsed = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected FIELD=VALUE, got '{item}'", param_hint="--field")
        parsed[key.strip()] = value
    return parsed


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context) -> None:
    """Sync tracked records with a Notion database."""
    ctx.ensure_object(dict)

    # Load settings
    try:
        settings = get_settings()
        ctx.obj["app"] = App(settings)
    except Exception as e:
        ctx.obj["settings_error"] = str(e)
        return

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


@main.command()
def templates() -> None:
    """List available schema templates."""
    for template in list_templates():
        star = " (recommended)" if template.recommended else ""
        click.echo(f"{template.icon} {template.id}: {template.name}{star}")
        click.echo(f"    {template.description}")
        click.echo(f"    Fields: {', '.join(f.name for f in template.fields)}")


@main.command()
@click.option("--template", "template_id", default=DEFAULT_TEMPLATE_ID, show_default=True)
@click.option("--name", default=None, help="Schema name (defaults to the template name)")
@click.pass_context
def init(ctx: click.Context, template_id: str, name: str | None) -> None:
    """Create a schema from a template and make it active."""
    app = _app(ctx)
    try:
        schema = app.registry.instantiate_from_template(template_id, app.user_id, name=name)
        app.registry.set_active(app.user_id, schema.id)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    click.echo(f"Created schema '{schema.name}' ({schema.id}) and made it active")


@main.command()
@click.pass_context
def schemas(ctx: click.Context) -> None:
    """List your schemas."""
    app = _app(ctx)
    active = app.registry.get_active(app.user_id)
    user_schemas = app.registry.list_schemas(app.user_id)
    if not user_schemas:
        click.echo("No schemas yet; the legacy field set is used. Run 'tracker2notion init'.")
        return

    for schema in user_schemas:
        marker = "*" if active and schema.id == active.id else " "
        click.echo(f"{marker} {schema.id}: {schema.name} ({len(schema.fields)} fields)")


@main.command()
@click.argument("schema_id")
@click.pass_context
def activate(ctx: click.Context, schema_id: str) -> None:
    """Make SCHEMA_ID the active schema."""
    app = _app(ctx)
    try:
        app.registry.set_active(app.user_id, schema_id)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    click.echo(f"Active schema: {schema_id}")


@main.command("migrate-schemas")
@click.pass_context
def migrate_schemas(ctx: click.Context) -> None:
    """Move all schemas to the simplified entry form."""
    app = _app(ctx)
    count = app.registry.migrate_user_schemas(app.user_id)
    click.echo(f"Migrated {count} schemas")


@main.command("migrate-records")
@click.option("--schema", "schema_id", default=None, help="Target schema (defaults to the active one)")
@click.pass_context
def migrate_records(ctx: click.Context, schema_id: str | None) -> None:
    """Move records logged before schemas existed onto a schema."""
    app = _app(ctx)
    try:
        count = app.registry.backfill_records(app.user_id, schema_id)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    click.echo(f"Migrated {count} records")


@main.command()
@click.option("--token", default=None, help="Notion integration token (defaults to NOTION_TOKEN)")
@click.option("--database-id", default=None, help="Existing database to sync with")
@click.pass_context
def connect(ctx: click.Context, token: str | None, database_id: str | None) -> None:
    """Store Notion credentials and check the database is reachable."""
    app = _app(ctx)
    updates = {}
    if token:
        updates["notion_api_key"] = token
    if database_id:
        updates["notion_database_id"] = database_id
    if updates:
        app.store.save_user_settings(app.user_id, **updates)
    user_settings = app.user_settings()

    if not user_settings.notion_api_key:
        click.echo("Error: no Notion token. Pass --token or set NOTION_TOKEN", err=True)
        ctx.exit(1)
    if not user_settings.notion_database_id:
        click.echo("Token saved. Run 'tracker2notion search' and 'create-database' to set up a database.")
        return

    async def run() -> None:
        client = app.client_factory(user_settings.notion_api_key)
        try:
            analysis = await client.analyze_database(user_settings.notion_database_id)
            click.echo(f"Connected to '{analysis.title}' ({len(analysis.columns)} properties)")
        finally:
            await client.close()

    _run(ctx, run())


@main.command()
@click.option("--kind", type=click.Choice(["page", "database"]), default=None)
@click.option("--path", "page_id", default=None, help="Show where PAGE_ID sits in the workspace")
@click.pass_context
def search(ctx: click.Context, kind: str | None, page_id: str | None) -> None:
    """Show pages and databases shared with the integration."""
    app = _app(ctx)
    user_settings = app.user_settings()

    async def run() -> None:
        client = app.client_factory(user_settings.notion_api_key)
        try:
            items = await client.search(kind)
        finally:
            await client.close()

        if page_id:
            path = page_path(build_page_tree(items), page_id)
            if not path:
                click.echo(f"Page {page_id} is not shared with the integration", err=True)
                ctx.exit(1)
            click.echo(" / ".join(node.item.title for node in path))
            return

        databases = [item for item in items if item.kind == "database"]
        if databases:
            click.echo("Databases:")
            for item in databases:
                click.echo(f"  {item.title}  ({item.id})")

        tree = build_page_tree(items)
        if tree:
            click.echo("Pages:")
            for node in flatten_page_tree(tree):
                click.echo(f"  {'  ' * node.level}{node.item.title}  ({node.item.id})")

        if not items:
            click.echo("Nothing shared with this integration yet.")

    _run(ctx, run())


@main.command("create-database")
@click.option("--parent", "parent_id", required=True, help="Page to create the database in")
@click.pass_context
def create_database(ctx: click.Context, parent_id: str) -> None:
    """Create a Notion database from the active schema."""
    app = _app(ctx)
    user_settings = app.user_settings()
    schema = app.registry.get_active(app.user_id)

    async def run() -> None:
        client = app.client_factory(user_settings.notion_api_key)
        try:
            title = schema.name if schema else DEFAULT_DATABASE_TITLE
            properties = build_database_properties(fields_for(schema))
            database_id = await client.create_database(parent_id, title, properties)
        finally:
            await client.close()

        app.store.save_user_settings(app.user_id, notion_database_id=database_id)
        click.echo(f"Created database '{title}' ({database_id}) with {len(properties)} properties")

    _run(ctx, run())


@main.command()
@click.option("--add-missing", is_flag=True, help="Add the schema's missing properties to the database")
@click.pass_context
def analyze(ctx: click.Context, add_missing: bool) -> None:
    """Compare the Notion database's columns with the active schema."""
    app = _app(ctx)
    user_settings = app.user_settings()
    schema = app.registry.get_active(app.user_id)

    async def run() -> None:
        client = app.client_factory(user_settings.notion_api_key)
        try:
            analysis = await client.analyze_database(user_settings.notion_database_id)

            click.echo(f"Database '{analysis.title}' has {len(analysis.columns)} properties:\n")
            for column in analysis.columns:
                click.echo(f"  {column.name}: {column.kind}")

            existing = {column.name: column.kind for column in analysis.columns}
            missing = [f for f in fields_for(schema) if f.name not in existing]
            mismatched = [
                f for f in fields_for(schema) if f.name in existing and existing[f.name] != f.remote_property_kind
            ]
            if missing:
                click.echo(f"\nMissing for this schema: {', '.join(f.name for f in missing)}")
            for field in mismatched:
                click.echo(
                    f"Type mismatch: {field.name} is {existing[field.name]}, expected {field.remote_property_kind}"
                )
            if not missing and not mismatched:
                click.echo("\nDatabase matches the active schema.")

            if add_missing and missing:
                await client.update_database(user_settings.notion_database_id, build_database_properties(missing))
                click.echo(f"Added {len(missing)} properties")
        finally:
            await client.close()

    _run(ctx, run())


@main.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Run a full sync and list the resulting records."""
    app = _app(ctx)
    app.user_settings()
    schema = app.registry.get_active(app.user_id)

    async def run() -> None:
        result = await app.orchestrator.run_full_sync(app.user_id)
        if not result.ok:
            click.echo(f"Sync failed, no records shown: {result.error}", err=True)
            ctx.exit(1)

        # Summary
        click.echo("\n" + "=" * 50)
        click.echo("SYNC COMPLETE")
        click.echo("=" * 50)
        click.echo(f"  Created: {result.stats.created}")
        click.echo(f"  Updated: {result.stats.updated}")
        click.echo(f"  Unchanged: {result.stats.unchanged}")
        click.echo(f"  Dropped: {result.stats.skipped}")
        if result.stats.errors:
            click.echo("\n  Error details:")
            for error in result.stats.errors[:5]:
                click.echo(f"    - {error}")
            if len(result.stats.errors) > 5:
                click.echo(f"    ... and {len(result.stats.errors) - 5} more")

        click.echo(f"\n{len(result.records)} records:")
        for record in result.records:
            click.echo(f"  {_format_record(record, fields_for(schema))}")

    _run(ctx, run())


@main.command()
@click.option("--field", "-f", "field_options", multiple=True, help="FIELD=VALUE, repeatable")
@click.pass_context
def add(ctx: click.Context, field_options: tuple[str, ...]) -> None:
    """Create a record and push it to Notion."""
    app = _app(ctx)
    app.user_settings()
    values = _parse_field_options(field_options)
    schema = app.registry.get_active(app.user_id)

    async def run() -> None:
        try:
            record = await app.orchestrator.push_new_record(app.user_id, values)
        except PushFailedError as e:
            click.echo(f"Notion rejected the record: {e.original_error}", err=True)
            if app.store.get_record(e.record.id) is not None:
                click.echo(f"Saved locally as {e.record.id}, not synced", err=True)
            ctx.exit(1)

        click.echo(f"Added {_format_record(record, fields_for(schema))}")
        if record.remote_url:
            click.echo(f"  {record.remote_url}")

    _run(ctx, run())


@main.command()
@click.argument("record_id")
@click.option("--field", "-f", "field_options", multiple=True, help="FIELD=VALUE, repeatable")
@click.pass_context
def edit(ctx: click.Context, record_id: str, field_options: tuple[str, ...]) -> None:
    """Change field values on a record and its Notion page."""
    app = _app(ctx)
    app.user_settings()
    values = _parse_field_options(field_options)
    schema = app.registry.get_active(app.user_id)

    async def run() -> None:
        try:
            record = await app.orchestrator.update_record(app.user_id, record_id, values)
        except PushFailedError as e:
            click.echo(f"Notion rejected the update: {e.original_error}", err=True)
            ctx.exit(1)

        click.echo(f"Updated {_format_record(record, fields_for(schema))}")

    _run(ctx, run())


@main.command()
@click.argument("record_id")
@click.option("--local-only", is_flag=True, help="Keep the Notion page")
@click.pass_context
def delete(ctx: click.Context, record_id: str, local_only: bool) -> None:
    """Delete a record, archiving its Notion page."""
    app = _app(ctx)
    app.user_settings()

    async def run() -> None:
        try:
            outcome = await app.orchestrator.delete_record(app.user_id, record_id, archive_remote=not local_only)
        except ArchiveFailedError as e:
            click.echo(f"Record kept: {e}", err=True)
            ctx.exit(1)

        if outcome.remote_archived:
            click.echo(f"Deleted {record_id} and archived its Notion page")
        else:
            click.echo(f"Deleted {record_id} locally")

    _run(ctx, run())


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show store and connection statistics."""
    app = _app(ctx)
    user_settings = app.user_settings()
    schema = app.registry.get_active(app.user_id)
    records = app.store.list_records(app.user_id)
    pending = app.orchestrator.pending_records(app.user_id)

    click.echo(f"User: {app.user_id}")
    click.echo(f"Source of truth: {app.settings.source_of_truth.value}")
    click.echo(f"Schema: {schema.name if schema else 'legacy fields'}")
    click.echo(f"Notion database: {user_settings.notion_database_id or 'not configured'}")
    click.echo(f"\nLocal records: {len(records)}")
    click.echo(f"  Synced: {len(records) - len(pending)}")
    click.echo(f"  Pending (never pushed): {len(pending)}")


if __name__ == "__main__":
    main()

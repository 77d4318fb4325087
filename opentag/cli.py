"""Command Line Interface for OpenTag.

This module provides a CLI using Typer for issuing tags from a profile file
and resolving scanned tags back into a medical card.

Security Impact:
    - PINs are prompted with hidden input and never echoed or logged
    - Wrong PINs may be retried without limit; damaged tags exit non-zero
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from opentag import __version__
from opentag.domain.catalogs import (
    ALLERGIES,
    CATALOG_VERSION,
    MEDICAL_CONDITIONS,
    MEDICATIONS,
    in_catalog_order,
)
from opentag.domain.enums import DeliveryMode
from opentag.domain.medical_profile import MedicalProfile, TagPreview
from opentag.domain.ports import OpenTagError, RecordStorePort
from opentag.domain.services.vitals import cm_to_inches, kg_to_pounds
from opentag.infrastructure.logging_config import get_logger, setup_logging
from opentag.infrastructure.settings import settings
from opentag.main import ISSUE_METHOD, create_record_store, issue_online_tag, issue_serverless_tag
from opentag.resolution import ResolutionState, ResolvedProfile, TagResolver, resolve

# Initialize Typer app and Rich console
app = typer.Typer(
    name="opentag",
    help="OpenTag: emergency medical profiles behind a QR code and a 4-digit PIN",
    add_completion=False
)
console = Console()
logger = get_logger(__name__)


def create_record_store_cli() -> RecordStorePort:
    """Create record store based on configuration (CLI wrapper).

    Online tags must survive between invocations, so a store that lives only
    in this process is refused.
    """
    try:
        store_config = settings.store_config
        if not store_config.is_persistent:
            console.print(
                "[red]✗[/red] Online tags need a persistent store; "
                "set OT_STORE_TYPE=duckdb and OT_STORE_PATH to a database file"
            )
            raise typer.Exit(code=1)
        return create_record_store(store_config)
    except (OpenTagError, ValueError) as e:
        console.print(f"[red]✗[/red] Failed to create record store: {str(e)}")
        raise typer.Exit(code=1)


def _online_tag_id(tag: str) -> str:
    """Accept a bare tag ID or an online tag URL (``...?id=<tag_id>``)."""
    if "?" in tag:
        for pair in tag.split("?", 1)[1].split("&"):
            key, _, value = pair.partition("=")
            if key == "id" and value:
                return value
    return tag


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _listing(items) -> str:
    return ", ".join(item.value for item in items) or "None"


def render_card(resolved: ResolvedProfile) -> Table:
    """Render a resolved profile as a medical card."""
    profile = resolved.profile
    card = Table(title="Medical Card", show_header=False, padding=(0, 2))
    card.add_row("Name:", profile.full_name)
    card.add_row("Age:", resolved.age_display)
    card.add_row("Date of birth:", profile.date_of_birth.isoformat())
    card.add_row("Blood group:", profile.blood_group.value)
    card.add_row("Height:", f"{profile.height_cm} cm ({cm_to_inches(profile.height_cm)} in)")
    card.add_row("Weight:", f"{profile.weight_kg} kg ({kg_to_pounds(profile.weight_kg)} lb)")
    if resolved.bmi is not None:
        card.add_row("BMI:", f"{resolved.bmi} ({resolved.bmi_category.value})")
    card.add_row("Substance use:", profile.substance_use.value)
    card.add_row("Pregnant:", _yes_no(profile.pregnant))
    card.add_row("Organ donor:", _yes_no(profile.organ_donor))
    card.add_row("Allergies:", _listing(in_catalog_order(ALLERGIES, profile.allergies)))
    card.add_row("Medications:", _listing(in_catalog_order(MEDICATIONS, profile.medications)))
    card.add_row("Conditions:", _listing(in_catalog_order(MEDICAL_CONDITIONS, profile.medical_conditions)))
    card.add_row("Emergency contact:", profile.emergency_contact)
    return card


def _print_preview(preview: TagPreview) -> None:
    console.print(f"[bold]{preview.full_name}[/bold] [dim](blood group {preview.blood_group.value})[/dim]")


@app.command()
def issue(
    profile_file: Path = typer.Argument(..., help="Profile JSON file", exists=True, dir_okay=False),
    pin: Optional[str] = typer.Option(None, "--pin", "-p", help="4-digit PIN (prompted when omitted)"),
    mode: DeliveryMode = typer.Option(DeliveryMode.SERVERLESS, "--mode", "-m", help="Delivery mode", case_sensitive=False),
    tag_id: Optional[str] = typer.Option(None, "--tag-id", help="Tag ID for online tags (random by default)"),
    no_encrypt: bool = typer.Option(False, "--no-encrypt", help="Store an online profile unencrypted"),
) -> None:
    """Issue a tag for the profile in PROFILE_FILE and print its URL.

    Examples:
        opentag issue profile.json --pin 1234
        opentag issue profile.json --mode online --tag-id a1b2c3
    """
    try:
        profile = MedicalProfile.model_validate_json(profile_file.read_text(encoding="utf-8"))
    except PydanticValidationError as e:
        console.print(f"[red]✗[/red] Invalid profile: {e.error_count()} validation errors")
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "profile"
            console.print(f"  • {location}: {error['msg']}")
        raise typer.Exit(code=1)

    encrypt = not (mode is DeliveryMode.ONLINE and no_encrypt)
    if pin is None and encrypt:
        pin = typer.prompt("PIN", hide_input=True, confirmation_prompt=True)

    try:
        if mode is DeliveryMode.SERVERLESS:
            issued = issue_serverless_tag(profile, pin)
        else:
            store = create_record_store_cli()
            try:
                issued = issue_online_tag(store, profile, pin, tag_id=tag_id, encrypt=encrypt)
            finally:
                store.close()
    except OpenTagError as e:
        console.print(f"[red]✗[/red] Failed to issue tag: {str(e)}")
        raise typer.Exit(code=1)

    method_label = issued.cipher_method.value if issued.cipher_method else "unencrypted"
    console.print(f"[green]✓[/green] Issued {issued.mode.value} tag ({method_label})")
    if issued.mode is DeliveryMode.ONLINE:
        console.print(f"[dim]Tag ID:[/dim] {issued.payload}")
    console.print(issued.url, soft_wrap=True, markup=False, highlight=False)


def _scan_once(tag: str, pin: str, store: Optional[RecordStorePort], online: bool) -> ResolvedProfile:
    resolver = TagResolver(store=store)
    state = resolver.load_online(_online_tag_id(tag)) if online else resolver.load_serverless(tag)
    if resolver.preview is not None:
        _print_preview(resolver.preview)
    if state is ResolutionState.AWAITING_PIN:
        state = asyncio.run(resolver.submit_pin(pin))
    if state is not ResolutionState.RESOLVED:
        console.print(f"[red]✗[/red] {resolver.error}")
        raise typer.Exit(code=1)
    return resolver.result


def _scan_interactive(tag: str, store: Optional[RecordStorePort], online: bool) -> ResolvedProfile:
    shown = False

    async def ask_for_pin(preview: Optional[TagPreview]) -> str:
        nonlocal shown
        if preview is not None and not shown:
            _print_preview(preview)
            shown = True
        return typer.prompt("PIN", hide_input=True)

    return asyncio.run(resolve(
        _online_tag_id(tag) if online else tag,
        ask_for_pin,
        store=store,
        mode=DeliveryMode.ONLINE if online else DeliveryMode.SERVERLESS,
        on_failure=lambda message: console.print(f"[red]✗[/red] {message}"),
    ))


@app.command()
def scan(
    tag: str = typer.Argument(..., help="Tag URL, serverless payload, or tag ID with --online"),
    online: bool = typer.Option(False, "--online", help="Resolve an online tag through the record store"),
    pin: Optional[str] = typer.Option(None, "--pin", "-p", help="PIN for a single attempt (prompted when omitted)"),
) -> None:
    """Resolve a scanned tag and display the medical card.

    Without --pin the PIN is prompted until it opens the tag.

    Examples:
        opentag scan "https://opentag.github.io/serverless?data=...&method=AES-GCM"
        opentag scan a1b2c3 --online --pin 1234
    """
    store = create_record_store_cli() if online else None
    try:
        if pin is not None:
            resolved = _scan_once(tag, pin, store, online)
        else:
            resolved = _scan_interactive(tag, store, online)
    except OpenTagError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)
    finally:
        if store is not None:
            store.close()

    console.print(render_card(resolved))


@app.command()
def delete(
    tag_id: str = typer.Argument(..., help="Online tag ID to delete"),
) -> None:
    """Delete an online tag from the record store."""
    store = create_record_store_cli()
    try:
        result = store.delete(tag_id)
    finally:
        store.close()

    if result.is_failure():
        console.print(f"[red]✗[/red] {result.error}")
        raise typer.Exit(code=1)
    if not result.value:
        console.print(f"[yellow]⚠[/yellow] No tag found for ID '{tag_id}'")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Deleted tag {tag_id}")


@app.command()
def info() -> None:
    """Display configuration."""
    console.print("[bold blue]OpenTag Configuration[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Version:", __version__)
    info_table.add_row("Catalog Version:", str(CATALOG_VERSION))
    info_table.add_row("Issuing Cipher:", ISSUE_METHOD.value)
    info_table.add_row("Store Type:", settings.store_config.store_type)
    if settings.store_config.store_type == "duckdb":
        info_table.add_row("Store Path:", settings.get_db_path())
    info_table.add_row("Serverless URL:", settings.serverless_base_url)
    info_table.add_row("Online URL:", settings.online_base_url)
    info_table.add_row("Verification Delay:", f"{settings.verify_delay_ms} ms")

    console.print(info_table)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"OpenTag v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", help="Show version information", callback=_version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """OpenTag: emergency medical profiles behind a QR code and a 4-digit PIN."""
    setup_logging(use_json=settings.log_json, log_level="DEBUG" if verbose else settings.log_level)
    if verbose:
        logger.debug("Verbose logging enabled")


if __name__ == "__main__":
    app()

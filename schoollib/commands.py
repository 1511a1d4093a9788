from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation

import click
from flask.cli import AppGroup
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from schoollib.errors import CirculationError
from schoollib.models.book import BOOK_CONDITIONS
from schoollib.models.fine_payment import PAYMENT_METHODS
from schoollib.repositories.book_repo import BookRepo
from schoollib.repositories.student_repo import StudentRepo
from schoollib.repositories.transaction_repo import TransactionRepo
from schoollib.repositories.user_repo import UserRepo
from schoollib.services.borrow_service import BorrowService
from schoollib.services.fine_service import CURRENCY, FineService
from schoollib.services.setting_service import SettingService
from schoollib.tasks.overdue_sweep import run_overdue_sweep

circulation_cli = AppGroup("circulation", help="Borrow, return, fines and the overdue sweep.")
settings_cli = AppGroup("settings", help="Library settings.")


def _console() -> Console:
    # built per call so the test runner's stdout is picked up
    return Console(highlight=False)


def _parse_date(value):
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a YYYY-MM-DD date.") from None


def _student_or_fail(student_code):
    student = StudentRepo.get_by_code(student_code)
    if student is None:
        raise click.ClickException(f"No student with code '{student_code}'.")
    return student


def _transaction_or_fail(transaction_id):
    transaction = TransactionRepo.get(transaction_id)
    if transaction is None:
        raise click.ClickException(f"No transaction with id {transaction_id}.")
    return transaction


# ----------------------------------------------------------------------
# circulation
# ----------------------------------------------------------------------
@circulation_cli.command("sweep-overdue")
@click.option("--dry-run", is_flag=True, help="Show what would be updated without making changes.")
@click.option("--date", "on_date", default=None, help="Run as of this date (YYYY-MM-DD).")
def sweep_overdue_command(dry_run, on_date):
    """Mark past-due borrowed loans as overdue."""
    result = run_overdue_sweep(today=_parse_date(on_date), dry_run=dry_run)

    if result.count == 0:
        click.echo("No overdue transactions found.")
        return

    if not result.dry_run:
        click.echo(f"Updated {result.count} transaction(s) to overdue status.")
        return

    click.echo(f"DRY RUN: Would update {result.count} transaction(s) to overdue status.")
    table = Table(box=box.SIMPLE, header_style="bold cyan")
    for column in ("ID", "Student", "Book", "Borrowed", "Due Date", "Days Overdue"):
        table.add_column(column)
    for row in result.rows:
        table.add_row(
            str(row["id"]),
            escape(row["student"]),
            escape(row["book"][:30]),
            f"{row['borrowed_date']:%b %d, %Y}",
            f"{row['due_date']:%b %d, %Y}",
            f"{row['days_overdue']} days",
        )
    _console().print(table)


@circulation_cli.command("eligibility")
@click.argument("student_code")
def eligibility_command(student_code):
    """Can this student borrow right now?"""
    student = _student_or_fail(student_code)
    snapshot = BorrowService.get_student_snapshot(student)

    if snapshot["eligible"]:
        click.echo(f"{student.full_name}: eligible ({snapshot['remaining_capacity']} more book(s) allowed)")
    else:
        click.echo(f"{student.full_name}: not eligible. {snapshot['reason']}")
    click.echo(f"Borrowed: {snapshot['current_books_count']}  Unpaid fines: {CURRENCY}{snapshot['unpaid_fines']}")


@circulation_cli.command("borrow")
@click.argument("student_code")
@click.argument("accession_number")
@click.argument("operator")
@click.option("--due-date", default=None, help="Override the due date (YYYY-MM-DD).")
def borrow_command(student_code, accession_number, operator, due_date):
    """Lend a book to a student."""
    student = _student_or_fail(student_code)
    book = BookRepo.get_by_accession(accession_number)
    if book is None:
        raise click.ClickException(f"No book with accession number '{accession_number}'.")
    user = UserRepo.get_by_username(operator)
    if user is None:
        raise click.ClickException(f"No operator named '{operator}'.")

    try:
        tx = BorrowService.borrow_book(student, book, user, due_date=_parse_date(due_date))
    except CirculationError as e:
        raise click.ClickException(e.message)

    click.echo(f"Transaction {tx.id}: '{book.title}' lent to {student.full_name}, due {tx.due_date}.")


@circulation_cli.command("return")
@click.argument("transaction_id", type=int)
@click.option("--condition", type=click.Choice(BOOK_CONDITIONS), default=None)
@click.option("--notes", default=None)
@click.option("--pay-now", is_flag=True, help="Mark any fine as paid on the spot.")
def return_command(transaction_id, condition, notes, pay_now):
    """Take a book back."""
    tx = _transaction_or_fail(transaction_id)
    try:
        tx = BorrowService.return_book(tx, condition=condition, notes=notes, pay_fine_now=pay_now)
    except CirculationError as e:
        raise click.ClickException(e.message)

    if tx.fine_amount > 0:
        state = "paid" if tx.fine_paid else "unpaid"
        click.echo(f"Transaction {tx.id} returned. Fine: {CURRENCY}{tx.fine_amount} ({state}).")
    else:
        click.echo(f"Transaction {tx.id} returned. No fine.")


@circulation_cli.command("fine")
@click.argument("transaction_id", type=int)
def fine_command(transaction_id):
    """Show how a fine is computed."""
    tx = _transaction_or_fail(transaction_id)
    b = FineService.get_fine_breakdown(tx)

    table = Table(show_header=False, box=box.SIMPLE)
    table.add_column("field", style="bold")
    table.add_column("value")
    table.add_row("Due date", str(b["due_date"]))
    table.add_row("End date", str(b["end_date"]))
    table.add_row("Days overdue", str(b["days_overdue"]))
    table.add_row("Grace period", str(b["grace_period"]))
    table.add_row("Chargeable days", str(b["chargeable_days"]))
    table.add_row("Rate", f"{CURRENCY}{b['fine_per_day']}")
    table.add_row("Max fine", f"{CURRENCY}{b['max_fine_amount']}")
    table.add_row("Calculated", f"{CURRENCY}{b['calculated_fine']}")
    table.add_row("Stored", f"{CURRENCY}{b['stored_fine']}")
    table.add_row("Paid so far", f"{CURRENCY}{b['amount_paid']}")
    _console().print(table)
    click.echo(b["formula"])


@circulation_cli.command("pay-fine")
@click.argument("transaction_id", type=int)
@click.argument("amount")
@click.option("--method", type=click.Choice(PAYMENT_METHODS), default="cash")
def pay_fine_command(transaction_id, amount, method):
    """Record a full or partial fine payment."""
    try:
        amount = Decimal(amount)
    except InvalidOperation:
        raise click.BadParameter(f"'{amount}' is not an amount.") from None

    tx = _transaction_or_fail(transaction_id)
    result = FineService.record_payment(tx, amount, method)
    if not result.success:
        raise click.ClickException(result.message)
    click.echo(result.message)


@circulation_cli.command("waive-fine")
@click.argument("transaction_id", type=int)
@click.argument("reason")
def waive_fine_command(transaction_id, reason):
    """Waive a fine (admin only)."""
    tx = _transaction_or_fail(transaction_id)
    try:
        FineService.waive_fine(tx, reason)
    except CirculationError as e:
        raise click.ClickException(e.message)
    click.echo(f"Fine for transaction {tx.id} waived.")


# ----------------------------------------------------------------------
# settings
# ----------------------------------------------------------------------
@settings_cli.command("init")
def settings_init_command():
    """Insert any missing default settings."""
    created = SettingService.ensure_defaults()
    click.echo(f"Created {created} default setting(s).")


@settings_cli.command("show")
def settings_show_command():
    table = Table(header_style="bold cyan", box=box.SIMPLE)
    table.add_column("Group")
    table.add_column("Key")
    table.add_column("Value")
    for group in SettingService.get_grouped_settings().values():
        for key, setting in group["settings"].items():
            table.add_row(group["label"], key, escape(str(setting["value"])))
    _console().print(table)


@settings_cli.command("set")
@click.argument("key")
@click.argument("value")
def settings_set_command(key, value):
    if not SettingService.is_valid_key(key):
        raise click.ClickException(f"Unknown setting '{key}'.")
    SettingService.set(key, value)
    click.echo(f"{key} = {value}")


@settings_cli.command("reset")
@click.confirmation_option(prompt="Reset every setting to its default?")
def settings_reset_command():
    SettingService.reset_defaults()
    click.echo("Settings reset to defaults.")


def register_commands(app):
    app.cli.add_command(circulation_cli)
    app.cli.add_command(settings_cli)

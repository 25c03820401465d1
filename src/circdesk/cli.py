"""Command-line interface for circdesk.

Built with Typer for commands and Rich for output.
"""

import time
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import get_config
from .db import get_db
from .errors import CirculationError
from .fines.schemas import FineStatus
from .log import configure_logging
from .members.schemas import MemberSnapshot, SubscriptionStatus, SubscriptionTier
from .payments.schemas import PaymentStatus
from .utils import from_iso, short_id

# Create the main app
app = typer.Typer(
    name="circdesk",
    help="Library circulation desk: loans, reservations and fines.",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def fail(error: Exception) -> None:
    """Print an error and exit with status 1."""
    print_error(str(error))
    raise typer.Exit(1)


def get_desk():
    """Desk bound to the configured database."""
    from .desk import CirculationDesk

    return CirculationDesk(get_db(), get_config())


def format_when(value: Optional[str]) -> str:
    """Short display form of a stored timestamp."""
    parsed = from_iso(value)
    return parsed.strftime("%Y-%m-%d %H:%M") if parsed else "-"


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (default from config)"),
) -> None:
    """Library circulation desk."""
    configure_logging(log_level or get_config().log_level)


# ============================================================================
# Title Commands
# ============================================================================

title_app = typer.Typer(help="Manage titles and copy counts.")
app.add_typer(title_app, name="title")


@title_app.command("add")
def title_add(
    name: str = typer.Argument(..., help="Title name"),
    copies: int = typer.Option(1, "--copies", "-c", help="Number of copies owned"),
) -> None:
    """Add a title to the catalog."""
    from pydantic import ValidationError

    desk = get_desk()
    try:
        title = desk.add_title(name, copies=copies)
    except ValidationError as e:
        print_error(f"Invalid title: {e.errors()[0]['msg']}")
        raise typer.Exit(1)

    print_success(f"Added: {title.name} ({title.total_copies} copies)")
    console.print(f"[dim]ID: {title.id}[/dim]")


@title_app.command("list")
def title_list(
    active: bool = typer.Option(False, "--active", "-a", help="Show only titles open for lending"),
) -> None:
    """List titles and their free copies."""
    desk = get_desk()
    titles = desk.inventory.list_titles(active_only=active)

    if not titles:
        console.print("[dim]No titles found[/dim]")
        return

    table = Table(title="Titles", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Available", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Status")

    for title in titles:
        available = f"[green]{title.available_copies}[/green]" if title.available_copies else "[red]0[/red]"
        table.add_row(
            short_id(title.id),
            title.name,
            available,
            str(title.total_copies),
            "active" if title.is_active else "[dim]withdrawn[/dim]",
        )

    console.print(table)


@title_app.command("show")
def title_show(
    title_id: str = typer.Argument(..., help="Title ID"),
) -> None:
    """Show copy counts and the reservation queue for a title."""
    desk = get_desk()
    try:
        availability = desk.get_title_availability(title_id)
    except CirculationError as e:
        fail(e)

    console.print(Panel(
        f"[bold]{availability.name}[/bold]\n"
        f"Total: {availability.total}  Available: {availability.available}  "
        f"On loan: {availability.on_loan}  Held: {availability.held}",
        title="Title",
        style="cyan" if availability.is_active else "dim",
    ))

    if not availability.is_balanced:
        print_warning("Copy counts do not add up to the total")

    queue = desk.reservations.queue(title_id)
    if queue:
        console.print("[bold]Queue:[/bold]")
        for position, reservation in enumerate(queue, 1):
            console.print(f"  {position}. {reservation.member_id} [{reservation.status}]")


@title_app.command("stock")
def title_stock(
    title_id: str = typer.Argument(..., help="Title ID"),
    total: int = typer.Argument(..., help="New number of copies owned"),
) -> None:
    """Change the number of copies owned."""
    desk = get_desk()
    try:
        title = desk.adjust_stock(title_id, total)
    except CirculationError as e:
        fail(e)

    print_success(f"{title.name}: {title.total_copies} copies, {title.available_copies} available")


@title_app.command("deactivate")
def title_deactivate(
    title_id: str = typer.Argument(..., help="Title ID"),
) -> None:
    """Withdraw a title from lending."""
    desk = get_desk()
    try:
        title = desk.inventory.deactivate(title_id)
    except CirculationError as e:
        fail(e)

    print_success(f"Withdrawn: {title.name}")


@title_app.command("reactivate")
def title_reactivate(
    title_id: str = typer.Argument(..., help="Title ID"),
) -> None:
    """Return a withdrawn title to lending."""
    desk = get_desk()
    try:
        title = desk.inventory.reactivate(title_id)
    except CirculationError as e:
        fail(e)

    print_success(f"Reactivated: {title.name}")


# ============================================================================
# Member Commands
# ============================================================================

member_app = typer.Typer(help="Manage member subscription snapshots.")
app.add_typer(member_app, name="member")


@member_app.command("add")
def member_add(
    member_id: str = typer.Argument(..., help="Member ID"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    tier: SubscriptionTier = typer.Option(SubscriptionTier.FREE, "--tier", "-t", help="Subscription tier"),
    status: SubscriptionStatus = typer.Option(SubscriptionStatus.ACTIVE, "--status", "-s", help="Subscription status"),
    until: Optional[str] = typer.Option(None, "--until", "-u", help="Subscription end (YYYY-MM-DD)"),
) -> None:
    """Create or update a member."""
    end_date = None
    if until:
        try:
            end_date = datetime.fromisoformat(until)
        except ValueError:
            print_error(f"Invalid date: {until}")
            raise typer.Exit(1)

    desk = get_desk()
    member = desk.members.upsert(
        MemberSnapshot(id=member_id, name=name, tier=tier, status=status, end_date=end_date)
    )
    print_success(f"Member {member.id} saved ({member.tier}, {member.status})")


@member_app.command("list")
def member_list() -> None:
    """List members."""
    desk = get_desk()
    members = desk.members.list_members()

    if not members:
        console.print("[dim]No members found[/dim]")
        return

    table = Table(title="Members", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Tier")
    table.add_column("Status")
    table.add_column("Until")

    for member in members:
        table.add_row(
            member.id,
            member.name or "-",
            member.tier,
            member.status,
            format_when(member.end_date),
        )

    console.print(table)


@member_app.command("show")
def member_show(
    member_id: str = typer.Argument(..., help="Member ID"),
) -> None:
    """Show a member's entitlement, loans and balance."""
    desk = get_desk()
    try:
        entitlement = desk.engine.entitlement(member_id)
    except CirculationError as e:
        fail(e)

    loans = desk.get_member_loans(member_id)
    balance = desk.pending_balance(member_id)

    console.print(Panel(
        f"[bold]{member_id}[/bold] - {entitlement.tier.value}\n"
        f"Loans: {len(loans)}/{entitlement.max_concurrent_loans}  "
        f"Loan period: {entitlement.loan_duration_days} days  "
        f"Daily fine: {entitlement.daily_fine_rate}\n"
        f"Reservations: {'yes' if entitlement.can_reserve else 'no'}  "
        f"Pending fines: {balance}",
        title="Member",
    ))

    for loan in loans:
        status = loan.status_at(desk.clock())
        console.print(f"  {short_id(loan.id)} due {format_when(loan.due_at)} [{status.value}]")


@member_app.command("subscribe")
def member_subscribe(
    member_id: str = typer.Argument(..., help="Member ID"),
    plan: SubscriptionTier = typer.Argument(..., help="monthly or yearly"),
) -> None:
    """Extend a member's paid subscription by one period."""
    desk = get_desk()
    try:
        member = desk.members.activate_subscription(member_id, plan)
    except (CirculationError, ValueError) as e:
        fail(e)

    print_success(f"{member.id} is {member.tier} until {format_when(member.end_date)}")


@member_app.command("cancel")
def member_cancel(
    member_id: str = typer.Argument(..., help="Member ID"),
) -> None:
    """Cancel a subscription at the end of its period."""
    desk = get_desk()
    try:
        member = desk.members.cancel_subscription(member_id)
    except CirculationError as e:
        fail(e)

    print_success(f"Cancelled; premium until {format_when(member.end_date)}")


@member_app.command("notifications")
def member_notifications(
    member_id: str = typer.Argument(..., help="Member ID"),
    unread: bool = typer.Option(False, "--unread", "-u", help="Only unread"),
    mark_read: bool = typer.Option(False, "--mark-read", "-m", help="Mark all as read"),
) -> None:
    """Show a member's notifications."""
    desk = get_desk()
    notifications = desk.notifications.list_for_member(member_id, unread_only=unread)

    if not notifications:
        console.print("[dim]No notifications[/dim]")
        return

    for notification in notifications:
        marker = "[dim]" if notification.is_read else "[bold]"
        console.print(f"{marker}{format_when(notification.created_at)} {notification.message}[/]")

    if mark_read:
        count = desk.notifications.mark_all_read(member_id)
        console.print(f"[dim]Marked {count} as read[/dim]")


# ============================================================================
# Loan Commands
# ============================================================================

loan_app = typer.Typer(help="Borrow, renew and return books.")
app.add_typer(loan_app, name="loan")


@loan_app.command("borrow")
def loan_borrow(
    member_id: str = typer.Argument(..., help="Member ID"),
    title_id: str = typer.Argument(..., help="Title ID"),
) -> None:
    """Lend a copy of a title to a member."""
    desk = get_desk()
    try:
        loan = desk.borrow(member_id, title_id)
    except CirculationError as e:
        fail(e)

    print_success(f"Loan {loan.id} due {format_when(loan.due_at)}")


@loan_app.command("renew")
def loan_renew(
    loan_id: str = typer.Argument(..., help="Loan ID"),
) -> None:
    """Renew a loan."""
    desk = get_desk()
    try:
        loan = desk.renew(loan_id)
    except CirculationError as e:
        fail(e)

    print_success(f"Renewed ({loan.renewal_count}), now due {format_when(loan.due_at)}")


@loan_app.command("return")
def loan_return(
    loan_id: str = typer.Argument(..., help="Loan ID"),
    returned_by: Optional[str] = typer.Option(None, "--by", "-b", help="Who checked the copy in"),
) -> None:
    """Check a copy back in."""
    desk = get_desk()
    try:
        result = desk.return_loan(loan_id, returned_by=returned_by)
    except CirculationError as e:
        fail(e)

    print_success("Loan marked as returned")
    if result.fine:
        print_warning(f"Returned {result.fine.days_overdue} day(s) late: fine {result.fine.amount} ({result.fine.id})")


@loan_app.command("list")
def loan_list(
    member_id: Optional[str] = typer.Option(None, "--member", "-m", help="Only this member's loans"),
    all_loans: bool = typer.Option(False, "--all", "-a", help="Include returned loans"),
) -> None:
    """List loans."""
    from .circulation.schemas import LoanStatus

    desk = get_desk()
    if member_id:
        loans = desk.get_member_loans(member_id, include_returned=all_loans)
    else:
        loans = desk.engine.list_loans(status=None if all_loans else LoanStatus.ACTIVE)

    if not loans:
        console.print("[dim]No loans found[/dim]")
        return

    now = desk.clock()
    table = Table(title="Loans", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Member")
    table.add_column("Title", style="cyan", max_width=30)
    table.add_column("Issued")
    table.add_column("Due")
    table.add_column("Status")

    for loan in loans:
        title = desk.inventory.get_title(loan.title_id)
        status = loan.status_at(now)
        if status == LoanStatus.OVERDUE:
            status_str = f"[bold red]OVERDUE ({loan.days_overdue_at(now)}d)[/bold red]"
        elif status == LoanStatus.ACTIVE:
            status_str = "[green]active[/green]"
        else:
            status_str = "[dim]returned[/dim]"

        table.add_row(
            short_id(loan.id),
            loan.member_id,
            title.name if title else "Unknown",
            format_when(loan.issued_at),
            format_when(loan.due_at),
            status_str,
        )

    console.print(table)


@loan_app.command("overdue")
def loan_overdue() -> None:
    """Show overdue loans and the fines they are accruing."""
    desk = get_desk()
    report = desk.engine.get_overdue_loans()

    if not report.loans:
        print_success("No overdue loans!")
        return

    console.print(Panel(
        f"[bold red]Overdue Loans: {report.total_overdue}[/bold red]\n"
        f"Oldest: {report.oldest_overdue_days} days overdue\n"
        f"Accrued: {report.total_accrued}",
        style="red",
    ))

    table = Table(show_header=True, header_style="bold red")
    table.add_column("Loan", style="dim")
    table.add_column("Member")
    table.add_column("Due Date")
    table.add_column("Days Overdue", justify="right")
    table.add_column("Fine so far", justify="right")

    for loan in report.loans:
        table.add_row(
            short_id(loan.loan_id),
            loan.member_id,
            format_when(loan.due_at),
            f"[bold red]{loan.days_overdue}[/bold red]",
            str(loan.accrued_fine),
        )

    console.print(table)


@loan_app.command("due-soon")
def loan_due_soon(
    days: int = typer.Option(3, "--days", "-d", help="Days to look ahead"),
) -> None:
    """Show loans due soon."""
    desk = get_desk()
    loans = desk.engine.get_loans_due_soon(days=days)

    if not loans:
        console.print(f"[dim]No loans due in the next {days} days[/dim]")
        return

    console.print(f"[bold]Loans due in the next {days} days:[/bold]")
    for loan in loans:
        console.print(f"  {format_when(loan.due_at)}: {short_id(loan.id)} ({loan.member_id})")


@loan_app.command("remind")
def loan_remind(
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Days to look ahead (default from config)"),
) -> None:
    """Send due-date reminders for loans due soon."""
    desk = get_desk()
    reminders = desk.send_due_reminders(days)

    if not reminders:
        console.print("[dim]No reminders to send[/dim]")
        return

    print_success(f"Sent {len(reminders)} due reminder(s)")
    for notification in reminders:
        console.print(f"  {notification.member_id}: {notification.message}")


# ============================================================================
# Reservation Commands
# ============================================================================

reserve_app = typer.Typer(help="Reserve titles and collect held copies.")
app.add_typer(reserve_app, name="reserve")


@reserve_app.command("add")
def reserve_add(
    member_id: str = typer.Argument(..., help="Member ID"),
    title_id: str = typer.Argument(..., help="Title ID"),
) -> None:
    """Join the queue for a title."""
    desk = get_desk()
    try:
        reservation = desk.reserve(member_id, title_id)
    except CirculationError as e:
        fail(e)

    position = desk.reservations.queue_position(reservation.id)
    print_success(f"Reserved, position {position} in the queue")
    console.print(f"[dim]ID: {reservation.id}[/dim]")


@reserve_app.command("convert")
def reserve_convert(
    reservation_id: str = typer.Argument(..., help="Reservation ID"),
    member_id: Optional[str] = typer.Option(None, "--member", "-m", help="Member collecting the copy"),
) -> None:
    """Collect a held copy as a loan."""
    desk = get_desk()
    try:
        loan = desk.convert_to_loan(reservation_id, member_id=member_id)
    except CirculationError as e:
        fail(e)

    print_success(f"Loan {loan.id} due {format_when(loan.due_at)}")


@reserve_app.command("cancel")
def reserve_cancel(
    reservation_id: str = typer.Argument(..., help="Reservation ID"),
    cancelled_by: Optional[str] = typer.Option(None, "--by", "-b", help="Who cancelled"),
) -> None:
    """Cancel a reservation."""
    desk = get_desk()
    try:
        desk.cancel_reservation(reservation_id, cancelled_by=cancelled_by)
    except CirculationError as e:
        fail(e)

    print_success("Reservation cancelled")


@reserve_app.command("list")
def reserve_list(
    member_id: str = typer.Argument(..., help="Member ID"),
    all_reservations: bool = typer.Option(False, "--all", "-a", help="Include closed reservations"),
) -> None:
    """List a member's reservations."""
    desk = get_desk()
    reservations = desk.reservations.get_member_reservations(member_id, active_only=not all_reservations)

    if not reservations:
        console.print("[dim]No reservations found[/dim]")
        return

    table = Table(title="Reservations", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Title", style="cyan", max_width=30)
    table.add_column("Requested")
    table.add_column("Status")
    table.add_column("Collect by")

    for reservation in reservations:
        title = desk.inventory.get_title(reservation.title_id)
        table.add_row(
            short_id(reservation.id),
            title.name if title else "Unknown",
            format_when(reservation.requested_at),
            reservation.status,
            format_when(reservation.expires_at),
        )

    console.print(table)


# ============================================================================
# Fine Commands
# ============================================================================

fine_app = typer.Typer(help="View, collect and waive fines.")
app.add_typer(fine_app, name="fine")


@fine_app.command("list")
def fine_list(
    member_id: Optional[str] = typer.Option(None, "--member", "-m", help="Only this member's fines"),
    status: Optional[FineStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List fines."""
    desk = get_desk()
    fines = desk.fines.list_fines(member_id=member_id, status=status)

    if not fines:
        console.print("[dim]No fines found[/dim]")
        return

    table = Table(title="Fines", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Member")
    table.add_column("Days", justify="right")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Issued")

    for fine in fines:
        table.add_row(
            short_id(fine.id),
            fine.member_id,
            str(fine.days_overdue),
            str(fine.amount),
            fine.status,
            format_when(fine.issued_at),
        )

    console.print(table)


@fine_app.command("pay")
def fine_pay(
    fine_id: str = typer.Argument(..., help="Fine ID"),
) -> None:
    """Request payment of a fine."""
    desk = get_desk()
    try:
        payment = desk.request_fine_payment(fine_id)
    except CirculationError as e:
        fail(e)

    print_success(f"Payment {payment.id} requested for {payment.amount}")
    console.print(f"[dim]Confirm with: circdesk payment confirm {payment.id}[/dim]")


@fine_app.command("waive")
def fine_waive(
    fine_id: str = typer.Argument(..., help="Fine ID"),
    reason: str = typer.Option(..., "--reason", "-r", help="Why the fine is waived"),
    waived_by: Optional[str] = typer.Option(None, "--by", "-b", help="Staff member"),
) -> None:
    """Waive a fine."""
    desk = get_desk()
    try:
        fine = desk.waive_fine(fine_id, reason, waived_by=waived_by)
    except CirculationError as e:
        fail(e)

    print_success(f"Fine of {fine.amount} waived")


# ============================================================================
# Payment Commands
# ============================================================================

payment_app = typer.Typer(help="Payment requests and processor results.")
app.add_typer(payment_app, name="payment")


@payment_app.command("confirm")
def payment_confirm(
    payment_id: str = typer.Argument(..., help="Payment ID"),
) -> None:
    """Record that a payment was collected."""
    desk = get_desk()
    try:
        payment = desk.on_payment_result(payment_id, PaymentStatus.COMPLETED)
    except CirculationError as e:
        fail(e)

    print_success(f"Payment of {payment.amount} completed")
    if payment.failure_reason:
        print_warning(payment.failure_reason)


@payment_app.command("fail")
def payment_fail(
    payment_id: str = typer.Argument(..., help="Payment ID"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Failure reason"),
) -> None:
    """Record that a payment failed."""
    desk = get_desk()
    try:
        payment = desk.on_payment_result(payment_id, PaymentStatus.FAILED, failure_reason=reason)
    except CirculationError as e:
        fail(e)

    print_warning(f"Payment {short_id(payment.id)} is {payment.status}")


@payment_app.command("subscribe")
def payment_subscribe(
    member_id: str = typer.Argument(..., help="Member ID"),
    plan: SubscriptionTier = typer.Argument(..., help="monthly or yearly"),
    amount: str = typer.Argument(..., help="Amount to charge"),
) -> None:
    """Request payment for a subscription."""
    desk = get_desk()
    try:
        payment = desk.payments.request_subscription_payment(member_id, plan, amount)
    except (CirculationError, ValueError, ArithmeticError) as e:
        fail(e)

    print_success(f"Payment {payment.id} requested for {payment.amount}")


@payment_app.command("list")
def payment_list(
    member_id: Optional[str] = typer.Option(None, "--member", "-m", help="Only this member's payments"),
    status: Optional[PaymentStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List payments."""
    desk = get_desk()
    payments = desk.payments.list_payments(member_id=member_id, status=status)

    if not payments:
        console.print("[dim]No payments found[/dim]")
        return

    table = Table(title="Payments", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Kind")
    table.add_column("Member")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Requested")

    for payment in payments:
        table.add_row(
            short_id(payment.id),
            payment.kind,
            payment.member_id,
            str(payment.amount),
            payment.status,
            format_when(payment.requested_at),
        )

    console.print(table)


# ============================================================================
# Maintenance Commands
# ============================================================================


@app.command()
def sweep(
    watch: bool = typer.Option(False, "--watch", "-w", help="Keep sweeping until interrupted"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds between sweeps"),
) -> None:
    """Expire uncollected holds, pass copies on and send due reminders."""
    desk = get_desk()

    if not watch:
        try:
            result = desk.expire_stale()
            reminders = desk.send_due_reminders()
        except CirculationError as e:
            fail(e)
        print_success(f"Expired {len(result.expired)} hold(s), promoted {len(result.promoted)}")
        print_success(f"Sent {len(reminders)} due reminder(s)")
        return

    sweeper = desk.sweeper(interval)
    console.print(f"[dim]Sweeping every {sweeper.interval}s, Ctrl+C to stop[/dim]")
    sweeper.start()
    try:
        while sweeper.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        sweeper.stop()


@app.command()
def config() -> None:
    """Show and validate configuration."""
    cfg = get_config()

    table = Table(title="Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in vars(cfg).items():
        table.add_row(name, "-" if value is None else str(value))
    console.print(table)

    errors = cfg.validate()
    for error in errors:
        print_error(error)
    if errors:
        raise typer.Exit(1)


# ============================================================================
# Version Command
# ============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"circdesk version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

import typer
from rich.console import Console
from rich.table import Table
from typing import Optional, List

from ritual.config import settings
from ritual.logging_config import configure_logging
from ritual.database import SessionLocal, init_db
from ritual.context import SessionContext
from ritual.errors import RitualError, GenerationFailed, GenerationTimeout
from ritual.location import CITY_DATA, DAYS_IN_WEEK, HOUR_SLOTS, TIME_BANDS
from ritual.schemas import CycleStatus, PreferencePayload, ReconciliationState
from ritual import crud, coordinator, reconciliation, synthesis, memories
from ritual.notifications import wait_for_cycle

app = typer.Typer(help="Ritual CLI - plan one shared weekly ritual as a couple")
console = Console()

USER_OPTION = typer.Option(..., "--user", "-u", help="Your user id")


@app.callback()
def main(log_level: str = typer.Option(settings.log_level, help="Logging level")):
    configure_logging(log_level)


def _context(user_id: str) -> SessionContext:
    db = SessionLocal()
    try:
        couple = crud.get_couple_for_user(db, user_id)
    finally:
        db.close()
    if not couple:
        console.print(f"[red]✗[/red] {user_id} is not part of a couple yet")
        raise typer.Exit(1)
    return SessionContext(user_id, couple.id)


def _this_week(ctx: SessionContext) -> str:
    return coordinator.current_cycle(ctx).id


def _fail(e: Exception):
    console.print(f"[red]✗[/red] {e}")
    raise typer.Exit(1)


def _print_rituals(rituals):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Ritual", style="green")
    table.add_column("Time", style="blue")
    table.add_column("Budget", style="yellow")
    table.add_column("Category")

    for i, ritual in enumerate(rituals, 1):
        table.add_row(str(i), f"[bold]{ritual.title}[/bold]\n{ritual.description}",
                      ritual.time_estimate, ritual.budget_band, ritual.category)
    console.print(table)


@app.command()
def init():
    """Initialize database tables"""
    init_db()
    console.print("[green]✓[/green] Database initialized successfully!")


@app.command()
def reset_db():
    """Delete all data and reinitialize database (WARNING: irreversible!)"""
    confirm = typer.confirm("⚠️  This will DELETE ALL DATA. Are you sure?")
    if not confirm:
        console.print("[yellow]Cancelled.[/yellow]")
        return

    from ritual.database import engine, Base
    console.print("[yellow]Dropping all tables...[/yellow]")
    Base.metadata.drop_all(bind=engine)
    console.print("[yellow]Recreating tables...[/yellow]")
    init_db()
    console.print("[green]✓[/green] Database reset complete! All data deleted.")


@app.command()
def create_couple(
    user: str = USER_OPTION,
    city: str = typer.Option(settings.default_city, help=f"One of: {', '.join(CITY_DATA)}")
):
    """Start a couple; share the printed id with your partner"""
    if city not in CITY_DATA:
        _fail(f"Unknown city {city}")
    db = SessionLocal()
    try:
        couple = crud.create_couple(db, user, city)
        console.print(f"[green]✓[/green] Couple created! Couple ID: {couple.id}")
        console.print(f"  City: {couple.preferred_city}")
    except RitualError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def join_couple(
    couple_id: str = typer.Option(..., prompt="Couple ID"),
    user: str = USER_OPTION
):
    """Join your partner's couple"""
    db = SessionLocal()
    try:
        if crud.join_couple(db, couple_id, user):
            console.print(f"[green]✓[/green] Joined couple {couple_id}")
        else:
            console.print(f"[red]✗[/red] Couple {couple_id} is full, missing, or yours already")
    except RitualError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def set_city(
    user: str = USER_OPTION,
    city: str = typer.Option(..., prompt="City", help=f"One of: {', '.join(CITY_DATA)}")
):
    """Change the couple's city (time zone, season and local ideas)"""
    ctx = _context(user)
    try:
        coordinator.set_city(ctx, city)
    except RitualError as e:
        _fail(e)
    console.print(f"[green]✓[/green] City set to {city}")


@app.command()
def status(user: str = USER_OPTION):
    """Show where this week's cycle stands"""
    ctx = _context(user)
    try:
        snap = coordinator.snapshot(ctx, _this_week(ctx))
    except RitualError as e:
        _fail(e)

    console.print(f"\n[bold]Week of {snap.week_start_date}[/bold]  ({snap.status.value})")
    console.print(f"  Your input: {'✓' if snap.my_input_done else '…'}   Partner: {'✓' if snap.partner_input_done else '…'}")
    if snap.generation_error:
        console.print(f"  [red]Generation failed ({snap.generation_error_code}):[/red] {snap.generation_error}")
    if snap.rituals:
        console.print(f"  Picks: you {snap.my_picks}/3, partner {snap.partner_picks}/3")
        console.print(f"  Free slots: you {snap.my_slots}, partner {snap.partner_slots}")
        _print_rituals(snap.rituals)
    if snap.agreed_ritual:
        when = f"{snap.agreed_date} {snap.agreed_time or snap.agreed_time_band}"
        console.print(f"\n[green]Agreed:[/green] [bold]{snap.agreed_ritual.title}[/bold] on {when}")
        if not snap.agreed_time:
            picker = "you" if snap.slot_picker_id == user else "your partner"
            console.print(f"  Hour to be picked by {picker}")


@app.command()
def submit(
    user: str = USER_OPTION,
    moods: str = typer.Option(..., prompt="Mood cards (comma-separated, e.g. cozy,deep-talk)"),
    desire: Optional[str] = typer.Option(None, help="Heart's desire for the week")
):
    """Submit your weekly input"""
    ctx = _context(user)
    payload = PreferencePayload(mood_tags=moods.split(","), desire=desire)
    try:
        cycle_status = coordinator.submit_input(ctx, _this_week(ctx), payload)
    except RitualError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Input saved ({cycle_status.value})")
    if cycle_status == CycleStatus.ONE_SUBMITTED:
        console.print("  Waiting for your partner...")
    elif ctx.background.pending():
        console.print("[yellow]Generating rituals (this may take a moment)...[/yellow]")
        ctx.background.drain(settings.generation_ceiling_seconds)
        status(user)


@app.command()
def wait(
    user: str = USER_OPTION,
    timeout: float = typer.Option(settings.generation_ceiling_seconds, help="Seconds to wait")
):
    """Wait for proposals (or a failure) to land on this week's cycle"""
    ctx = _context(user)
    cycle_id = _this_week(ctx)
    with console.status("Waiting for proposals..."):
        snap = wait_for_cycle(ctx, cycle_id, lambda s: bool(s.rituals), timeout=timeout)
    if snap.rituals:
        _print_rituals(snap.rituals)
    elif snap.status == CycleStatus.FAILED:
        console.print(f"[red]✗[/red] Generation failed ({snap.generation_error_code}); try `generate`")
    else:
        console.print(f"[yellow]Still {snap.status.value}; it may finish later.[/yellow]")


@app.command()
def generate(user: str = USER_OPTION):
    """Generate (or retry generating) this week's rituals"""
    ctx = _context(user)
    try:
        with console.status("Generating rituals..."):
            result = synthesis.request_generation(ctx, _this_week(ctx))
    except GenerationTimeout as e:
        console.print(f"[yellow]{e}. Taking too long; run `wait` to pick up the result.[/yellow]")
        return
    except GenerationFailed as e:
        hint = "try again later" if e.retry_later else "try again"
        _fail(f"{e.message} ({e.code}), {hint}")
    except RitualError as e:
        _fail(e)

    if result.rituals:
        _print_rituals(result.rituals)
    else:
        console.print(f"[yellow]{result.status.value}[/yellow]")


@app.command()
def swap(
    user: str = USER_OPTION,
    title: str = typer.Option(..., prompt="Title of the ritual to replace")
):
    """Get one replacement idea for a ritual"""
    ctx = _context(user)
    try:
        replacement = synthesis.swap_ritual(ctx, _this_week(ctx), title)
    except RitualError as e:
        _fail(e)
    _print_rituals([replacement])


@app.command()
def rank(
    user: str = USER_OPTION,
    number: int = typer.Option(..., prompt="Ritual number (from status)"),
    position: int = typer.Option(..., prompt="Rank (1-3)"),
    day: Optional[int] = typer.Option(None, help="Preferred day, 0 (Monday) to 6"),
    hour: Optional[str] = typer.Option(None, help="Preferred hour, e.g. 7:00 PM")
):
    """Rank one of this week's rituals"""
    ctx = _context(user)
    try:
        cycle_id = _this_week(ctx)
        rituals = coordinator.snapshot(ctx, cycle_id).rituals
        if not 1 <= number <= len(rituals):
            _fail(f"Pick a ritual between 1 and {len(rituals)}")
        ranked = reconciliation.rank_ritual(ctx, cycle_id, rituals[number - 1].title, position, day, hour)
    except RitualError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Ranked '{ranked.title}' #{position}")


@app.command()
def unrank(user: str = USER_OPTION, position: int = typer.Option(..., prompt="Rank to clear (1-3)")):
    """Clear one of your picks"""
    ctx = _context(user)
    try:
        removed = reconciliation.remove_rank(ctx, _this_week(ctx), position)
    except RitualError as e:
        _fail(e)
    console.print("[green]✓[/green] Cleared" if removed else f"[yellow]Nothing ranked #{position}[/yellow]")


@app.command()
def availability(
    user: str = USER_OPTION,
    slots: List[str] = typer.Argument(..., help="day:band pairs, e.g. 0:evening 5:morning (day 0 is Monday)")
):
    """Toggle the times you're free this week"""
    ctx = _context(user)
    cycle_id = _this_week(ctx)
    for slot in slots:
        day, _, band = slot.partition(":")
        if not day.isdigit() or band not in TIME_BANDS:
            _fail(f"Bad slot {slot}; use day (0-{DAYS_IN_WEEK - 1}):band ({'/'.join(TIME_BANDS)})")
        try:
            now_free = reconciliation.toggle_availability(ctx, cycle_id, int(day), band)
        except RitualError as e:
            _fail(e)
        console.print(f"  Day {day} {band}: {'free' if now_free else 'busy'}")


@app.command()
def agree(user: str = USER_OPTION):
    """Reconcile both partners' picks into this week's ritual"""
    ctx = _context(user)
    try:
        result = reconciliation.compute_agreement(ctx, _this_week(ctx))
    except RitualError as e:
        _fail(e)

    if result.state == ReconciliationState.AGREED:
        console.print(f"[green]✓[/green] [bold]{result.ritual.title}[/bold] on {result.agreed_date} ({result.time_slot})")
        if result.picker_id == user:
            console.print(f"  You pick the hour: {', '.join(HOUR_SLOTS[result.time_slot])}")
    elif result.state == ReconciliationState.NO_OVERLAP:
        console.print("[red]No shared free time.[/red] Adjust availability and try again.")
    elif result.state == ReconciliationState.NO_MUTUAL_CANDIDATE:
        console.print("[red]You didn't rank any ritual in common.[/red] Adjust picks and try again.")
    else:
        console.print(f"[yellow]Not yet: {result.state.value}[/yellow]")


@app.command()
def pick_hour(user: str = USER_OPTION, hour: str = typer.Option(..., prompt="Hour (e.g. 7:00 PM)")):
    """Picker only: narrow the agreed band to one hour"""
    ctx = _context(user)
    try:
        reconciliation.select_hour(ctx, _this_week(ctx), hour)
    except RitualError as e:
        _fail(e)
    console.print(f"[green]✓[/green] See you at {hour}")


@app.command()
def complete(
    user: str = USER_OPTION,
    rating: Optional[int] = typer.Option(None, min=1, max=5, help="1-5 stars"),
    notes: Optional[str] = typer.Option(None, help="A reflection to remember")
):
    """Mark this week's ritual as done"""
    ctx = _context(user)
    try:
        cycle_id = _this_week(ctx)
        memories.record_completion(ctx, cycle_id)
        if rating or notes:
            memories.add_memory(ctx, cycle_id, rating=rating, notes=notes)
    except RitualError as e:
        _fail(e)
    console.print("[green]✓[/green] Ritual completed!")


@app.command()
def history(user: str = USER_OPTION, limit: int = 10):
    """Show your shared ritual memories"""
    ctx = _context(user)
    items = memories.list_memories(ctx, limit=limit)
    if not items:
        console.print("[yellow]No memories yet[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Date", style="cyan")
    table.add_column("Ritual", style="green")
    table.add_column("Rating", style="yellow", justify="right")
    table.add_column("Notes")
    for memory in items:
        table.add_row(str(memory.completion_date), memory.ritual_title,
                      "★" * (memory.rating or 0), memory.notes or "")
    console.print(table)


if __name__ == "__main__":
    app()
